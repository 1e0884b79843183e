"""
Device Model and Install Strategy Mapping

This module defines the closed set of supported device types and the profile
table that maps each of them to a firmware repository, an asset naming tag and
an install strategy. The table must cover every DeviceType; a missing entry is
reported at import time instead of silently falling through at install time.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple

import usb.core
import usb.util

from flashtastic.constants import (
    DFU_DEFAULT_ALT_SETTING,
    DFU_DEFAULT_INTERFACE,
    DFUSE_DEFAULT_ADDRESS,
    GITHUB_BRIDGE_REPO,
    GITHUB_CLICK_REPO,
    GITHUB_ULOOP_REPO,
    USB_BRIDGE6_PRODUCT_ID,
    USB_BRIDGE_PRODUCT_DFU_ID,
    USB_BRIDGE_PRODUCT_ID,
    USB_BRIDGE_VENDOR_ID,
    USB_CLICK_PRODUCT_ID,
    USB_CLICK_VENDOR_ID,
    USB_RP_BOOTLOADER_PRODUCT_ID,
    USB_RP_VENDOR_ID,
    USB_ULOOP_PRODUCT_ID,
)
from flashtastic.exceptions import UnsupportedDeviceError
from flashtastic.log_utils import logger


class DeviceType(Enum):
    """Every kind of device Flashtastic can see on the USB bus."""

    BRIDGE4 = "bridge4"
    BRIDGE6 = "bridge6"
    CLICK = "click"
    ULOOP = "uloop"
    BRIDGE_BOOTLOADER = "bridge_bootloader"
    RP_BOOTLOADER = "rp_bootloader"
    UNKNOWN = "unknown"


class InstallStrategy(Enum):
    """How a firmware image is written to a device."""

    DFU = "dfu"
    MASS_STORAGE = "mass_storage"


@dataclass(frozen=True)
class DfuTarget:
    """USB identity of a device in DFU mode and where its image is written."""

    vendor_id: int
    product_id: int
    interface: int = DFU_DEFAULT_INTERFACE
    alt_setting: int = DFU_DEFAULT_ALT_SETTING
    address: int = DFUSE_DEFAULT_ADDRESS


BRIDGE_DFU_TARGET = DfuTarget(
    vendor_id=USB_BRIDGE_VENDOR_ID,
    product_id=USB_BRIDGE_PRODUCT_DFU_ID,
)


@dataclass(frozen=True)
class DeviceProfile:
    """
    Release channel and install path for one device type.

    Bootloader and unknown types carry no repository and no strategy.
    """

    repository: Optional[str] = None
    asset_tag: Optional[str] = None
    strategy: Optional[InstallStrategy] = None
    dfu_target: Optional[DfuTarget] = None

    @property
    def has_releases(self) -> bool:
        return self.repository is not None


DEVICE_PROFILES: Dict[DeviceType, DeviceProfile] = {
    DeviceType.BRIDGE4: DeviceProfile(
        repository=GITHUB_BRIDGE_REPO,
        asset_tag="bridge4",
        strategy=InstallStrategy.DFU,
        dfu_target=BRIDGE_DFU_TARGET,
    ),
    DeviceType.BRIDGE6: DeviceProfile(
        repository=GITHUB_BRIDGE_REPO,
        asset_tag="bridge6",
        strategy=InstallStrategy.DFU,
        dfu_target=BRIDGE_DFU_TARGET,
    ),
    DeviceType.CLICK: DeviceProfile(
        repository=GITHUB_CLICK_REPO,
        asset_tag="click",
        strategy=InstallStrategy.DFU,
        dfu_target=BRIDGE_DFU_TARGET,
    ),
    DeviceType.ULOOP: DeviceProfile(
        repository=GITHUB_ULOOP_REPO,
        asset_tag="uloop",
        strategy=InstallStrategy.MASS_STORAGE,
    ),
    DeviceType.BRIDGE_BOOTLOADER: DeviceProfile(),
    DeviceType.RP_BOOTLOADER: DeviceProfile(),
    DeviceType.UNKNOWN: DeviceProfile(),
}

# (vendor_id, product_id) -> device type, used by detect_devices()
USB_DEVICE_IDS: Dict[Tuple[int, int], DeviceType] = {
    (USB_BRIDGE_VENDOR_ID, USB_BRIDGE_PRODUCT_ID): DeviceType.BRIDGE4,
    (USB_BRIDGE_VENDOR_ID, USB_BRIDGE6_PRODUCT_ID): DeviceType.BRIDGE6,
    (USB_BRIDGE_VENDOR_ID, USB_BRIDGE_PRODUCT_DFU_ID): DeviceType.BRIDGE_BOOTLOADER,
    (USB_CLICK_VENDOR_ID, USB_CLICK_PRODUCT_ID): DeviceType.CLICK,
    (USB_RP_VENDOR_ID, USB_ULOOP_PRODUCT_ID): DeviceType.ULOOP,
    (USB_RP_VENDOR_ID, USB_RP_BOOTLOADER_PRODUCT_ID): DeviceType.RP_BOOTLOADER,
}


def _verify_profiles() -> None:
    """
    Check that the profile table is total and internally consistent.

    Raises:
        RuntimeError: If a DeviceType has no profile, a profile with a repository
            lacks a tag or strategy, or a DFU profile lacks a DFU target.
    """
    missing = [t.name for t in DeviceType if t not in DEVICE_PROFILES]
    if missing:
        raise RuntimeError(f"DeviceType values without a profile: {missing}")

    for device_type, profile in DEVICE_PROFILES.items():
        if not profile.has_releases:
            if profile.strategy is not None or profile.asset_tag is not None:
                raise RuntimeError(
                    f"{device_type.name} has an install path but no repository"
                )
            continue
        if profile.asset_tag is None or profile.strategy is None:
            raise RuntimeError(
                f"{device_type.name} needs both an asset tag and a strategy"
            )
        if profile.strategy is InstallStrategy.DFU and profile.dfu_target is None:
            raise RuntimeError(f"{device_type.name} uses DFU but has no DFU target")


_verify_profiles()


@dataclass(frozen=True)
class ConnectedDevice:
    """
    Identity of the currently attached hardware.

    Only `device_type` drives behavior; the remaining fields help the user tell
    devices apart and are carried through for logging.
    """

    device_type: DeviceType
    serial: Optional[str] = None
    vendor_id: Optional[int] = None
    product_id: Optional[int] = None
    mount_point: Optional[str] = None

    @property
    def profile(self) -> DeviceProfile:
        return DEVICE_PROFILES[self.device_type]

    def describe(self) -> str:
        label = self.device_type.value
        if self.vendor_id is not None and self.product_id is not None:
            label += f" ({self.vendor_id:04x}:{self.product_id:04x})"
        if self.serial:
            label += f" serial={self.serial}"
        return label


def repository_for(device_type: DeviceType) -> str:
    """
    Return the firmware repository name for a device type.

    Raises:
        UnsupportedDeviceError: For bootloader and unknown device types.
    """
    profile = DEVICE_PROFILES[device_type]
    if profile.repository is None:
        raise UnsupportedDeviceError(device_type=device_type.value)
    return profile.repository


def strategy_for(device_type: DeviceType) -> InstallStrategy:
    """
    Return the install strategy for a device type.

    Raises:
        UnsupportedDeviceError: For bootloader and unknown device types, which
            never reach the install stage.
    """
    profile = DEVICE_PROFILES[device_type]
    if profile.strategy is None:
        raise UnsupportedDeviceError(
            "no install strategy for this device type", device_type.value
        )
    return profile.strategy


def _read_serial(usb_device) -> Optional[str]:
    if not usb_device.iSerialNumber:
        return None
    try:
        return usb.util.get_string(usb_device, usb_device.iSerialNumber)
    except (usb.core.USBError, ValueError, NotImplementedError) as exc:
        # Reading strings often needs permissions the user lacks
        logger.debug(f"Could not read serial number: {exc}")
        return None


def detect_devices() -> List[ConnectedDevice]:
    """
    Enumerate attached USB devices and return the ones Flashtastic knows.

    Returns:
        List[ConnectedDevice]: Known devices in bus enumeration order. Empty when
            no supported device is attached or no USB backend is available.
    """
    try:
        found = list(usb.core.find(find_all=True))
    except usb.core.NoBackendError as exc:
        logger.error(f"No USB backend available: {exc}")
        return []

    devices: List[ConnectedDevice] = []
    for usb_device in found:
        device_type = USB_DEVICE_IDS.get((usb_device.idVendor, usb_device.idProduct))
        if device_type is None:
            continue
        device = ConnectedDevice(
            device_type=device_type,
            serial=_read_serial(usb_device),
            vendor_id=usb_device.idVendor,
            product_id=usb_device.idProduct,
        )
        logger.debug(f"Detected device: {device.describe()}")
        devices.append(device)
    return devices
