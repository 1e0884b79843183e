"""
Mass-Storage (UF2) Installer

Copies a UF2 image onto the removable volume a device exposes in bootloader
mode. The OS mounts that volume asynchronously after the device re-enumerates,
so the installer waits a fixed settle interval once before looking for it.
"""

import os
import platform
import time
from pathlib import Path
from typing import Optional

import psutil

from flashtastic.constants import (
    UF2_COPY_BUFFER_SIZE,
    UF2_SETTLE_SECONDS,
    UF2_VOLUME_LABEL,
)
from flashtastic.exceptions import DiskNotFoundError, FileSystemError
from flashtastic.log_utils import logger
from flashtastic.progress import ProgressSink, ProgressTracker

LINUX_BY_LABEL_DIR = Path("/dev/disk/by-label")
LINUX_SYS_BLOCK_DIR = Path("/sys/class/block")


def _windows_volume_label(mountpoint: str) -> Optional[str]:
    import ctypes

    label = ctypes.create_unicode_buffer(261)
    ok = ctypes.windll.kernel32.GetVolumeInformationW(  # type: ignore[attr-defined]
        ctypes.c_wchar_p(mountpoint), label, len(label), None, None, None, None, 0
    )
    return label.value if ok else None


def _linux_volume_label(device: str) -> Optional[str]:
    if not LINUX_BY_LABEL_DIR.is_dir():
        return None
    try:
        device_path = Path(device).resolve()
        for link in LINUX_BY_LABEL_DIR.iterdir():
            if link.resolve() == device_path:
                return link.name.replace("\\x20", " ")
    except OSError as e:
        logger.debug(f"Could not read disk labels: {e}")
    return None


def get_volume_label(partition) -> str:
    """
    Best-effort volume label of a mounted partition.

    Uses the Windows volume information or the Linux by-label links, and falls
    back to the mount point's directory name (which is the label for automounted
    volumes on Linux and macOS).
    """
    label = None
    if platform.system() == "Windows":
        label = _windows_volume_label(partition.mountpoint)
    elif platform.system() == "Linux":
        label = _linux_volume_label(partition.device)
    return label or Path(partition.mountpoint).name


def is_removable(partition) -> bool:
    """Whether a mounted partition lives on removable media."""
    opts = (partition.opts or "").lower()
    system = platform.system()
    if system == "Windows":
        return "removable" in opts.split(",")
    if system == "Darwin":
        return partition.mountpoint.startswith("/Volumes/")

    # Linux: the removable flag sits on the whole disk, one level above a partition
    name = Path(partition.device).name
    sys_entry = LINUX_SYS_BLOCK_DIR / name
    for candidate in (sys_entry / "removable", sys_entry.resolve().parent / "removable"):
        try:
            return candidate.read_text().strip() == "1"
        except OSError:
            continue
    return False


def find_target_disk(label: str = UF2_VOLUME_LABEL) -> Optional[str]:
    """
    Return the mount point of the first removable volume labelled `label`.

    The label is compared case-insensitively. Returns None when no such
    volume is mounted.
    """
    partitions = psutil.disk_partitions(all=False)
    logger.debug(f"available disks: {[p.mountpoint for p in partitions]}")
    for partition in partitions:
        if not is_removable(partition):
            continue
        if get_volume_label(partition).lower() == label.lower():
            return partition.mountpoint
    return None


def copy_with_progress(
    source: Path,
    destination: Path,
    progress: Optional[ProgressSink] = None,
    buffer_size: int = UF2_COPY_BUFFER_SIZE,
) -> int:
    """
    Copy a file in `buffer_size` chunks, reporting progress after each chunk.

    The destination is flushed and fsynced before returning.

    Returns:
        int: Number of bytes written.
    """
    total = source.stat().st_size
    tracker = ProgressTracker(progress, total)
    with open(source, "rb") as src, open(destination, "wb") as dst:
        while True:
            chunk = src.read(buffer_size)
            if not chunk:
                break
            dst.write(chunk)
            tracker.advance(len(chunk))
        dst.flush()
        os.fsync(dst.fileno())
    tracker.finish()
    return tracker.transferred


def install_mass_storage(
    firmware_path: os.PathLike,
    progress: Optional[ProgressSink] = None,
    volume_label: str = UF2_VOLUME_LABEL,
    settle_seconds: float = UF2_SETTLE_SECONDS,
) -> int:
    """
    Copy a UF2 firmware file to the root of the device's bootloader volume.

    Blocks for the settle interval plus the copy; run it off the event loop.

    Parameters:
        firmware_path: Local UF2 image; copied under its own file name.
        progress: Receives byte-count samples during the copy.
        volume_label: Expected label of the bootloader volume.
        settle_seconds: Time allowed for the OS to mount the volume.

    Returns:
        int: Bytes written to the volume.

    Raises:
        DiskNotFoundError: No removable volume with the label is mounted.
        FileSystemError: The copy failed; the reason is attached.
    """
    source = Path(firmware_path)

    # Give the OS time to mount the volume after the device re-enumerates
    time.sleep(settle_seconds)

    mount_point = find_target_disk(volume_label)
    if mount_point is None:
        raise DiskNotFoundError(volume_label=volume_label)

    destination = Path(mount_point) / source.name
    logger.info(f"Copying {source.name} to {destination}")
    try:
        written = copy_with_progress(source, destination, progress)
    except OSError as e:
        raise FileSystemError(
            f"upload failed with reason: {e}", str(destination)
        ) from e

    logger.info(f"Firmware copied to {mount_point} ({written} bytes written)")
    return written
