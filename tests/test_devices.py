"""
Tests for the device model, the profile table and USB detection.
"""

from unittest.mock import MagicMock

import pytest
import usb.core

from flashtastic import devices
from flashtastic.devices import (
    BRIDGE_DFU_TARGET,
    DEVICE_PROFILES,
    ConnectedDevice,
    DeviceType,
    InstallStrategy,
    detect_devices,
    repository_for,
    strategy_for,
)
from flashtastic.exceptions import UnsupportedDeviceError

pytestmark = [pytest.mark.unit]


class TestProfiles:
    def test_every_device_type_has_a_profile(self):
        assert set(DEVICE_PROFILES) == set(DeviceType)

    @pytest.mark.parametrize(
        "device_type,expected",
        [
            (DeviceType.BRIDGE4, InstallStrategy.DFU),
            (DeviceType.BRIDGE6, InstallStrategy.DFU),
            (DeviceType.CLICK, InstallStrategy.DFU),
            (DeviceType.ULOOP, InstallStrategy.MASS_STORAGE),
        ],
    )
    def test_strategy_for_installable_types(self, device_type, expected):
        assert strategy_for(device_type) is expected

    @pytest.mark.parametrize(
        "device_type",
        [DeviceType.BRIDGE_BOOTLOADER, DeviceType.RP_BOOTLOADER, DeviceType.UNKNOWN],
    )
    def test_bootloader_and_unknown_are_unsupported(self, device_type):
        with pytest.raises(UnsupportedDeviceError):
            strategy_for(device_type)
        with pytest.raises(UnsupportedDeviceError):
            repository_for(device_type)

    def test_bridge_variants_share_a_repository(self):
        assert repository_for(DeviceType.BRIDGE4) == repository_for(DeviceType.BRIDGE6)
        assert repository_for(DeviceType.CLICK) != repository_for(DeviceType.BRIDGE4)
        assert repository_for(DeviceType.ULOOP) != repository_for(DeviceType.CLICK)

    def test_dfu_profiles_carry_a_target(self):
        for profile in DEVICE_PROFILES.values():
            if profile.strategy is InstallStrategy.DFU:
                assert profile.dfu_target == BRIDGE_DFU_TARGET

    def test_verify_profiles_rejects_missing_entry(self, monkeypatch):
        table = dict(DEVICE_PROFILES)
        del table[DeviceType.CLICK]
        monkeypatch.setattr(devices, "DEVICE_PROFILES", table)

        with pytest.raises(RuntimeError, match="CLICK"):
            devices._verify_profiles()

    def test_verify_profiles_rejects_dfu_without_target(self, monkeypatch):
        table = dict(DEVICE_PROFILES)
        table[DeviceType.CLICK] = devices.DeviceProfile(
            repository="click-firmware",
            asset_tag="click",
            strategy=InstallStrategy.DFU,
        )
        monkeypatch.setattr(devices, "DEVICE_PROFILES", table)

        with pytest.raises(RuntimeError, match="DFU target"):
            devices._verify_profiles()


class TestConnectedDevice:
    def test_describe_includes_usb_id_and_serial(self, bridge4_device):
        assert bridge4_device.describe() == "bridge4 (1209:b004) serial=B4-0001"

    def test_describe_minimal(self):
        assert ConnectedDevice(DeviceType.ULOOP).describe() == "uloop"


def _usb_device(vendor_id, product_id, serial_index=0):
    device = MagicMock()
    device.idVendor = vendor_id
    device.idProduct = product_id
    device.iSerialNumber = serial_index
    return device


class TestDetectDevices:
    def test_maps_known_ids_and_skips_others(self, mocker):
        found = [
            _usb_device(0x1209, 0xB004, serial_index=3),
            _usb_device(0x046D, 0xC52B),
            _usb_device(0x2E8A, 0x0003),
        ]
        mocker.patch("flashtastic.devices.usb.core.find", return_value=iter(found))
        mocker.patch("flashtastic.devices.usb.util.get_string", return_value="B4-42")

        result = detect_devices()

        assert [d.device_type for d in result] == [
            DeviceType.BRIDGE4,
            DeviceType.RP_BOOTLOADER,
        ]
        assert result[0].serial == "B4-42"
        assert result[1].serial is None

    def test_unreadable_serial_is_ignored(self, mocker):
        mocker.patch(
            "flashtastic.devices.usb.core.find",
            return_value=[_usb_device(0x1209, 0xC11C, serial_index=1)],
        )
        mocker.patch(
            "flashtastic.devices.usb.util.get_string",
            side_effect=usb.core.USBError("Access denied"),
        )

        result = detect_devices()

        assert result == [
            ConnectedDevice(
                DeviceType.CLICK, serial=None, vendor_id=0x1209, product_id=0xC11C
            )
        ]

    def test_no_backend_returns_empty(self, mocker):
        mocker.patch(
            "flashtastic.devices.usb.core.find",
            side_effect=usb.core.NoBackendError("No backend available"),
        )

        assert detect_devices() == []
