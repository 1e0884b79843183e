"""
Release asset compatibility rules.

`is_compatible` is the only rule deciding whether a binary may reach a device.
Release listing and asset download both go through the helpers below, so an
asset accepted while listing is accepted again at download time.
"""

from typing import TYPE_CHECKING, List

from flashtastic.constants import (
    ASSET_TAG_SEPARATORS,
    DFU_FIRMWARE_EXTENSION,
    UF2_FIRMWARE_EXTENSION,
)
from flashtastic.devices import DEVICE_PROFILES, ConnectedDevice, InstallStrategy

if TYPE_CHECKING:
    from flashtastic.download.interfaces import Asset, Release

FIRMWARE_EXTENSIONS = {
    InstallStrategy.DFU: DFU_FIRMWARE_EXTENSION,
    InstallStrategy.MASS_STORAGE: UF2_FIRMWARE_EXTENSION,
}


def is_compatible(asset: "Asset", device: ConnectedDevice) -> bool:
    """
    Decide whether an asset targets the connected device.

    An asset matches when its lower-cased name starts with the device family's
    asset tag followed by a separator (`-`, `_` or `.`) and ends with the
    extension of the family's install strategy. For example `bridge4-v1.2.0.bin`
    matches a Bridge4 device but neither a Bridge6 nor `bridge4-v1.2.0.uf2`.

    Bootloader and unknown devices match nothing.

    Parameters:
        asset (Asset): Release asset to check.
        device (ConnectedDevice): The attached device.

    Returns:
        bool: True if the asset may be installed on the device.
    """
    profile = DEVICE_PROFILES[device.device_type]
    if profile.asset_tag is None or profile.strategy is None:
        return False

    name = asset.name.strip().lower()
    if not name.endswith(FIRMWARE_EXTENSIONS[profile.strategy]):
        return False

    tag = profile.asset_tag
    return name.startswith(tag) and name[len(tag) : len(tag) + 1] in ASSET_TAG_SEPARATORS


def compatible_assets(release: "Release", device: ConnectedDevice) -> List["Asset"]:
    """Return the release's assets that are compatible with the device, in catalog order."""
    return [asset for asset in release.assets if is_compatible(asset, device)]


def is_usable(release: "Release", device: ConnectedDevice) -> bool:
    """A release is usable when at least one of its assets is compatible."""
    return any(is_compatible(asset, device) for asset in release.assets)
