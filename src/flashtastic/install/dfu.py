"""
DFU Installer

Flashes a firmware image onto a device in DFU mode. One call is one attempt:
open, claim, transfer, detach, reset. Nothing is retried and the image is
never sent twice.
"""

import os
from pathlib import Path
from typing import List, Optional

import usb.core

from flashtastic.constants import DFU_MAX_FIRMWARE_SIZE
from flashtastic.devices import BRIDGE_DFU_TARGET, DfuTarget
from flashtastic.exceptions import (
    DfuTeardownError,
    FileSystemError,
    FirmwareSizeError,
    UsbTransportError,
)
from flashtastic.log_utils import logger
from flashtastic.progress import ProgressSink

from .dfuse import open_dfu_device


def install_dfu(
    firmware_path: os.PathLike,
    progress: Optional[ProgressSink] = None,
    target: DfuTarget = BRIDGE_DFU_TARGET,
) -> None:
    """
    Write a firmware file to the attached DFU device.

    Blocks for the whole transfer; run it off the event loop.

    Parameters:
        firmware_path: Local firmware image.
        progress: Receives byte-count samples while blocks are written.
        target: USB identity and flash address of the DFU device.

    Raises:
        FileSystemError: The file cannot be opened or read.
        FirmwareSizeError: The file is empty or too large to address.
        DeviceNotFoundError: No device in DFU mode is attached.
        UsbError: Opening or claiming the interface failed.
        UsbTransportError: The USB transport failed while writing.
        DfuProtocolError: The device reported a DFU error status.
        DfuTeardownError: The image was written but detach or reset failed.
    """
    path = Path(firmware_path)
    try:
        firmware = open(path, "rb")
    except OSError as e:
        raise FileSystemError(
            "could not open firmware file", str(path), str(e)
        ) from e

    with firmware:
        size = os.fstat(firmware.fileno()).st_size
        if size == 0:
            raise FirmwareSizeError("firmware file is empty", str(path), size)
        if size > DFU_MAX_FIRMWARE_SIZE:
            raise FirmwareSizeError("firmware file is too large", str(path), size)

        session = open_dfu_device(target)
        try:
            session.with_progress(progress).override_address(target.address)
            limit = session.max_download_size()
            if size > limit:
                raise FirmwareSizeError(
                    f"firmware file exceeds the {limit} bytes the device can address",
                    str(path),
                    size,
                )

            logger.info(f"Writing {path.name} ({size} bytes) at 0x{target.address:08x}")
            try:
                session.download(firmware, size)
            except usb.core.USBError as e:
                logger.error("unable to download firmware to device")
                raise UsbTransportError(
                    "unable to download firmware to device",
                    stage="download",
                    details=str(e),
                ) from e
            except OSError as e:
                raise FileSystemError(
                    "could not read firmware file", str(path), str(e)
                ) from e

            _teardown(session)
        finally:
            session.release()

    logger.info("Firmware installed; device detached and reset")


def _teardown(session) -> None:
    """
    Detach and reset after a complete transfer.

    Reset is attempted even when detach fails. Any failure raises
    DfuTeardownError, flagged as firmware_committed.
    """
    failed: List[str] = []
    reasons: List[str] = []

    for step, action in (("detach", session.detach), ("reset", session.usb_reset)):
        try:
            action()
        except usb.core.USBError as e:
            logger.warning(f"Firmware written but {step} failed: {e}")
            failed.append(step)
            reasons.append(f"{step}: {e}")

    if failed:
        raise DfuTeardownError(
            f"firmware transferred but unable to {' and '.join(failed)} device",
            failed_steps=failed,
            details="; ".join(reasons),
        )
