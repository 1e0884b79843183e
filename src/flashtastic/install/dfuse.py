"""
DfuSe protocol session over pyusb.

Implements the subset of USB DFU 1.1 and the ST DfuSe extension needed to
write an image: GETSTATUS polling, CLRSTATUS/ABORT recovery, set address
pointer, page erase, block download, DETACH and bus reset.

pyusb failures propagate as usb.core.USBError; DFU error states raise
DfuProtocolError. Callers decide how to classify them.
"""

import time
from dataclasses import dataclass
from typing import BinaryIO, Optional

import usb.core
import usb.util

from flashtastic.constants import (
    DFU_DEFAULT_TRANSFER_SIZE,
    DFU_STATUS_POLL_LIMIT,
    DFU_USB_TIMEOUT_MS,
    DFUSE_DEFAULT_ADDRESS,
    DFUSE_FIRST_DATA_BLOCK,
    DFUSE_LAST_BLOCK,
    DFUSE_PAGE_SIZE,
)
from flashtastic.devices import DfuTarget
from flashtastic.exceptions import (
    DeviceNotFoundError,
    DfuProtocolError,
    FirmwareSizeError,
    UsbError,
)
from flashtastic.log_utils import logger
from flashtastic.progress import ProgressSink, ProgressTracker

# bmRequestType: class request addressed to an interface
DFU_REQUEST_OUT = 0x21
DFU_REQUEST_IN = 0xA1

DFU_DETACH = 0
DFU_DNLOAD = 1
DFU_GETSTATUS = 3
DFU_CLRSTATUS = 4
DFU_ABORT = 6

DFU_STATE_IDLE = 2
DFU_STATE_DNBUSY = 4
DFU_STATE_DNLOAD_IDLE = 5
DFU_STATE_MANIFEST = 7
DFU_STATE_ERROR = 10

DFU_STATUS_OK = 0

DFUSE_CMD_SET_ADDRESS = 0x21
DFUSE_CMD_ERASE_PAGE = 0x41

DFU_FUNCTIONAL_DESCRIPTOR_TYPE = 0x21
DFU_DETACH_TIMEOUT_MS = 1000


@dataclass(frozen=True)
class DfuStatus:
    """Decoded DFU_GETSTATUS response."""

    status: int
    poll_timeout_ms: int
    state: int

    @classmethod
    def from_bytes(cls, data: bytes) -> "DfuStatus":
        if len(data) < 6:
            raise DfuProtocolError(
                f"short GETSTATUS response ({len(data)} bytes)", stage="status"
            )
        return cls(
            status=data[0],
            poll_timeout_ms=data[1] | (data[2] << 8) | (data[3] << 16),
            state=data[4],
        )


def _read_transfer_size(device, interface: int, alt_setting: int) -> Optional[int]:
    """Read wTransferSize from the DFU functional descriptor, if present."""
    try:
        config = device.get_active_configuration()
        intf = config[(interface, alt_setting)]
    except (usb.core.USBError, KeyError, IndexError, NotImplementedError):
        return None

    extra = bytes(getattr(intf, "extra_descriptors", None) or b"")
    offset = 0
    while offset + 2 <= len(extra):
        length = extra[offset]
        if length == 0:
            break
        if extra[offset + 1] == DFU_FUNCTIONAL_DESCRIPTOR_TYPE and length >= 7:
            return extra[offset + 5] | (extra[offset + 6] << 8)
        offset += length
    return None


class DfuseSession:
    """
    An open DFU interface on one device.

    Configure with `with_progress()` and `override_address()`, then call
    `download()`, `detach()` and `usb_reset()` in that order.
    """

    def __init__(
        self,
        device,
        interface: int = 0,
        alt_setting: int = 0,
        transfer_size: int = DFU_DEFAULT_TRANSFER_SIZE,
        timeout_ms: int = DFU_USB_TIMEOUT_MS,
    ) -> None:
        self.device = device
        self.interface = interface
        self.alt_setting = alt_setting
        self.transfer_size = transfer_size
        self.timeout_ms = timeout_ms
        self.address = DFUSE_DEFAULT_ADDRESS
        self.progress: Optional[ProgressSink] = None

    def with_progress(self, progress: Optional[ProgressSink]) -> "DfuseSession":
        self.progress = progress
        return self

    def override_address(self, address: int) -> "DfuseSession":
        self.address = address
        return self

    # -- low level requests --------------------------------------------------

    def _dnload(self, block: int, data: bytes) -> None:
        self.device.ctrl_transfer(
            DFU_REQUEST_OUT, DFU_DNLOAD, block, self.interface, data, self.timeout_ms
        )

    def get_status(self) -> DfuStatus:
        data = self.device.ctrl_transfer(
            DFU_REQUEST_IN, DFU_GETSTATUS, 0, self.interface, 6, self.timeout_ms
        )
        return DfuStatus.from_bytes(bytes(data))

    def clear_status(self) -> None:
        self.device.ctrl_transfer(
            DFU_REQUEST_OUT, DFU_CLRSTATUS, 0, self.interface, None, self.timeout_ms
        )

    def abort(self) -> None:
        self.device.ctrl_transfer(
            DFU_REQUEST_OUT, DFU_ABORT, 0, self.interface, None, self.timeout_ms
        )

    def _wait_until_ready(self, stage: str) -> DfuStatus:
        """Poll GETSTATUS until the device leaves the busy state."""
        for _ in range(DFU_STATUS_POLL_LIMIT):
            status = self.get_status()
            if status.status != DFU_STATUS_OK or status.state == DFU_STATE_ERROR:
                raise DfuProtocolError(
                    f"device reported an error during {stage}",
                    stage=stage,
                    status=status.status,
                    state=status.state,
                )
            if status.state not in (DFU_STATE_DNBUSY, DFU_STATE_MANIFEST):
                return status
            time.sleep(status.poll_timeout_ms / 1000.0)
        raise DfuProtocolError(f"device stayed busy during {stage}", stage=stage)

    def ensure_idle(self) -> None:
        """Bring the interface back to dfuIDLE, clearing a previous error."""
        status = self.get_status()
        if status.state == DFU_STATE_ERROR:
            logger.debug("DFU interface in error state; clearing status")
            self.clear_status()
            status = self.get_status()
        if status.state != DFU_STATE_IDLE:
            self.abort()
            status = self.get_status()
        if status.state != DFU_STATE_IDLE:
            raise DfuProtocolError(
                "device is not idle", stage="download", state=status.state
            )

    def _dfuse_command(self, command: int, address: int, stage: str) -> None:
        self._dnload(0, bytes([command]) + address.to_bytes(4, "little"))
        self._wait_until_ready(stage)

    def set_address(self, address: int) -> None:
        self._dfuse_command(DFUSE_CMD_SET_ADDRESS, address, "set address")

    def erase_page(self, address: int) -> None:
        self._dfuse_command(DFUSE_CMD_ERASE_PAGE, address, "erase")

    # -- high level operations -----------------------------------------------

    def max_download_size(self) -> int:
        """Largest image that fits both the 32-bit address space and the 16-bit block counter."""
        blocks = DFUSE_LAST_BLOCK - DFUSE_FIRST_DATA_BLOCK + 1
        return max(0, min(2**32 - self.address, blocks * self.transfer_size))

    def download(self, firmware: BinaryIO, size: int) -> None:
        """
        Erase and write `size` bytes read from `firmware` at the configured address.

        Progress samples are emitted after every written block; a completion
        sample follows the last one.
        """
        limit = self.max_download_size()
        if size > limit:
            raise FirmwareSizeError(
                f"firmware image exceeds {limit} bytes addressable at 0x{self.address:08x}",
                size=size,
            )
        self.ensure_idle()

        end = self.address + size
        page = self.address - (self.address % DFUSE_PAGE_SIZE)
        while page < end:
            self.erase_page(page)
            page += DFUSE_PAGE_SIZE

        self.set_address(self.address)

        tracker = ProgressTracker(self.progress, size)
        block = DFUSE_FIRST_DATA_BLOCK  # 0 is the command block
        remaining = size
        while remaining > 0:
            chunk = firmware.read(min(self.transfer_size, remaining))
            if not chunk:
                raise OSError(
                    f"firmware file ended early ({size - remaining} of {size} bytes)"
                )
            if block > DFUSE_LAST_BLOCK:
                raise FirmwareSizeError(
                    "firmware image needs more blocks than DfuSe can number", size=size
                )
            self._dnload(block, chunk)
            self._wait_until_ready("download")
            remaining -= len(chunk)
            block += 1
            tracker.advance(len(chunk))
        tracker.finish()
        logger.debug(f"Wrote {size} bytes in {block - DFUSE_FIRST_DATA_BLOCK} blocks")

    def detach(self) -> None:
        self.device.ctrl_transfer(
            DFU_REQUEST_OUT,
            DFU_DETACH,
            DFU_DETACH_TIMEOUT_MS,
            self.interface,
            None,
            self.timeout_ms,
        )

    def usb_reset(self) -> None:
        self.device.reset()

    def release(self) -> None:
        try:
            usb.util.release_interface(self.device, self.interface)
        except usb.core.USBError as exc:
            logger.debug(f"Could not release DFU interface: {exc}")
        usb.util.dispose_resources(self.device)


def open_dfu_device(target: DfuTarget) -> DfuseSession:
    """
    Find the device in DFU mode and claim its DFU interface.

    No polling: if the device has not re-enumerated yet the call fails.

    Raises:
        DeviceNotFoundError: No device with the target's VID/PID is attached.
        UsbError: The device could not be opened or its interface claimed.
    """
    try:
        device = usb.core.find(idVendor=target.vendor_id, idProduct=target.product_id)
    except usb.core.NoBackendError as e:
        raise UsbError("no USB backend available", stage="open", details=str(e)) from e
    if device is None:
        raise DeviceNotFoundError(
            "unable to connect with device",
            vendor_id=target.vendor_id,
            product_id=target.product_id,
        )

    try:
        try:
            device.get_active_configuration()
        except usb.core.USBError:
            device.set_configuration()
        usb.util.claim_interface(device, target.interface)
        device.set_interface_altsetting(target.interface, target.alt_setting)
    except (usb.core.USBError, NotImplementedError) as e:
        usb.util.dispose_resources(device)
        raise UsbError(
            "unable to claim DFU interface", stage="claim", details=str(e)
        ) from e

    transfer_size = (
        _read_transfer_size(device, target.interface, target.alt_setting)
        or DFU_DEFAULT_TRANSFER_SIZE
    )
    logger.debug(
        f"Opened DFU device {target.vendor_id:04x}:{target.product_id:04x} "
        f"(interface {target.interface}, alt {target.alt_setting}, "
        f"transfer size {transfer_size})"
    )
    return DfuseSession(
        device,
        interface=target.interface,
        alt_setting=target.alt_setting,
        transfer_size=transfer_size,
    )
