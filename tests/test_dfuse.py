"""
Tests for the DfuSe protocol session, driven by a simulated device.
"""

import io
from unittest.mock import MagicMock

import pytest
import usb.core

from flashtastic.devices import BRIDGE_DFU_TARGET
from flashtastic.exceptions import (
    DeviceNotFoundError,
    DfuProtocolError,
    FirmwareSizeError,
    UsbError,
)
from flashtastic.install import dfuse
from flashtastic.install.dfuse import DfuseSession, DfuStatus, open_dfu_device
from flashtastic.progress import QueueProgress

pytestmark = [pytest.mark.unit, pytest.mark.install]


class FakeDfuDevice:
    """
    Minimal DFU state machine answering ctrl_transfer like a DfuSe bootloader.

    `fail_on_block` makes the GETSTATUS following that DNLOAD block report errWRITE.
    """

    def __init__(self, state=dfuse.DFU_STATE_IDLE, fail_on_block=None):
        self.state = state
        self.status = dfuse.DFU_STATUS_OK
        self.fail_on_block = fail_on_block
        self.downloads = []
        self.requests = []
        self.reset = MagicMock()

    def ctrl_transfer(self, request_type, request, value, index, data, timeout):
        self.requests.append(request)
        if request == dfuse.DFU_GETSTATUS:
            return bytes([self.status, 0, 0, 0, self.state, 0])
        if request == dfuse.DFU_DNLOAD:
            self.downloads.append((value, bytes(data)))
            if value == self.fail_on_block:
                self.status = 0x03  # errWRITE
                self.state = dfuse.DFU_STATE_ERROR
            else:
                self.state = dfuse.DFU_STATE_DNLOAD_IDLE
        elif request == dfuse.DFU_CLRSTATUS:
            self.status = dfuse.DFU_STATUS_OK
            self.state = dfuse.DFU_STATE_IDLE
        elif request == dfuse.DFU_ABORT:
            self.state = dfuse.DFU_STATE_IDLE
        return None


class TestDfuStatus:
    def test_from_bytes(self):
        status = DfuStatus.from_bytes(bytes([0, 0x10, 0x02, 0x00, 5, 0]))

        assert status.status == 0
        assert status.poll_timeout_ms == 0x0210
        assert status.state == 5

    def test_short_response(self):
        with pytest.raises(DfuProtocolError):
            DfuStatus.from_bytes(b"\x00\x00")


class TestDownload:
    def test_erases_sets_address_and_writes_blocks(self):
        device = FakeDfuDevice()
        progress = QueueProgress()
        session = DfuseSession(device, transfer_size=2048)
        session.with_progress(progress).override_address(0x08000000)
        image = bytes(range(256)) * 19 + b"\xaa" * 136

        session.download(io.BytesIO(image), len(image))

        commands = [data for block, data in device.downloads if block == 0]
        assert [c[0] for c in commands] == [0x41, 0x41, 0x41, 0x21]
        erased = [int.from_bytes(c[1:5], "little") for c in commands[:3]]
        assert erased == [0x08000000, 0x08000800, 0x08001000]
        assert int.from_bytes(commands[3][1:5], "little") == 0x08000000

        blocks = [(block, data) for block, data in device.downloads if block != 0]
        assert [b for b, _ in blocks] == [2, 3, 4]
        assert b"".join(data for _, data in blocks) == image

        events = list(progress.drain())
        assert [e.transferred for e in events] == [2048, 4096, 5000, 5000]
        assert [e.done for e in events] == [False, False, False, True]

    def test_unaligned_address_erases_containing_page(self):
        device = FakeDfuDevice()
        session = DfuseSession(device).override_address(0x08000400)

        session.download(io.BytesIO(b"\x00" * 100), 100)

        erases = [d for b, d in device.downloads if b == 0 and d[0] == 0x41]
        assert [int.from_bytes(d[1:5], "little") for d in erases] == [0x08000000]

    def test_clears_previous_error_state(self):
        device = FakeDfuDevice(state=dfuse.DFU_STATE_ERROR)
        session = DfuseSession(device)

        session.download(io.BytesIO(b"\x01" * 10), 10)

        assert device.requests[:2] == [dfuse.DFU_GETSTATUS, dfuse.DFU_CLRSTATUS]

    def test_device_error_raises_protocol_error(self):
        device = FakeDfuDevice(fail_on_block=3)
        session = DfuseSession(device, transfer_size=1024)

        with pytest.raises(DfuProtocolError) as exc_info:
            session.download(io.BytesIO(b"\x00" * 4096), 4096)

        assert exc_info.value.stage == "download"
        assert exc_info.value.state == dfuse.DFU_STATE_ERROR
        # Nothing is written after the failing block
        assert max(block for block, _ in device.downloads) == 3

    def test_short_file_raises_os_error(self):
        session = DfuseSession(FakeDfuDevice())

        with pytest.raises(OSError):
            session.download(io.BytesIO(b"\x00" * 10), 100)

    def test_image_beyond_block_counter_is_rejected(self):
        device = FakeDfuDevice()
        session = DfuseSession(device, transfer_size=16)
        size = 16 * 65540

        with pytest.raises(FirmwareSizeError) as exc_info:
            session.download(io.BytesIO(b"\x00" * size), size)

        assert exc_info.value.size == size
        assert device.downloads == []

    def test_image_filling_every_block_number(self):
        device = FakeDfuDevice()
        session = DfuseSession(device, transfer_size=1)
        size = session.max_download_size()

        session.download(io.BytesIO(b"\x5a" * size), size)

        data_blocks = [block for block, _ in device.downloads if block != 0]
        assert size == 0xFFFE
        assert data_blocks[0] == 2
        assert data_blocks[-1] == 0xFFFF

    def test_image_past_end_of_address_space_is_rejected(self):
        device = FakeDfuDevice()
        session = DfuseSession(device).override_address(0xFFFFFF00)

        with pytest.raises(FirmwareSizeError):
            session.download(io.BytesIO(b"\x00" * 0x101), 0x101)

        assert device.downloads == []

    def test_image_ending_at_top_of_address_space(self):
        device = FakeDfuDevice()
        session = DfuseSession(device).override_address(0xFFFFFF00)

        session.download(io.BytesIO(b"\x00" * 0x100), 0x100)

        commands = [data for block, data in device.downloads if block == 0]
        assert int.from_bytes(commands[-1][1:5], "little") == 0xFFFFFF00

    def test_busy_device_is_polled(self, mocker):
        device = FakeDfuDevice()
        statuses = iter(
            [
                bytes([0, 5, 0, 0, dfuse.DFU_STATE_DNBUSY, 0]),
                bytes([0, 0, 0, 0, dfuse.DFU_STATE_DNLOAD_IDLE, 0]),
            ]
        )
        sleep = mocker.patch("flashtastic.install.dfuse.time.sleep")
        session = DfuseSession(device)
        mocker.patch.object(
            session, "get_status", side_effect=lambda: DfuStatus.from_bytes(next(statuses))
        )

        session._wait_until_ready("erase")

        sleep.assert_called_once_with(0.005)


class TestTeardown:
    def test_detach_sends_dfu_detach(self):
        device = FakeDfuDevice()

        DfuseSession(device).detach()

        assert device.requests == [dfuse.DFU_DETACH]

    def test_usb_reset(self):
        device = FakeDfuDevice()

        DfuseSession(device).usb_reset()

        device.reset.assert_called_once_with()

    def test_release_ignores_usb_errors(self, mocker):
        mocker.patch(
            "flashtastic.install.dfuse.usb.util.release_interface",
            side_effect=usb.core.USBError("gone"),
        )
        dispose = mocker.patch("flashtastic.install.dfuse.usb.util.dispose_resources")
        device = FakeDfuDevice()

        DfuseSession(device).release()

        dispose.assert_called_once_with(device)


class TestOpenDfuDevice:
    def test_no_device(self, mocker):
        mocker.patch("flashtastic.install.dfuse.usb.core.find", return_value=None)

        with pytest.raises(DeviceNotFoundError) as exc_info:
            open_dfu_device(BRIDGE_DFU_TARGET)

        assert exc_info.value.product_id == BRIDGE_DFU_TARGET.product_id

    def test_no_backend(self, mocker):
        mocker.patch(
            "flashtastic.install.dfuse.usb.core.find",
            side_effect=usb.core.NoBackendError("No backend available"),
        )

        with pytest.raises(UsbError) as exc_info:
            open_dfu_device(BRIDGE_DFU_TARGET)

        assert exc_info.value.stage == "open"

    def test_claim_failure(self, mocker):
        device = MagicMock()
        mocker.patch("flashtastic.install.dfuse.usb.core.find", return_value=device)
        mocker.patch(
            "flashtastic.install.dfuse.usb.util.claim_interface",
            side_effect=usb.core.USBError("Resource busy"),
        )
        dispose = mocker.patch("flashtastic.install.dfuse.usb.util.dispose_resources")

        with pytest.raises(UsbError) as exc_info:
            open_dfu_device(BRIDGE_DFU_TARGET)

        assert exc_info.value.stage == "claim"
        dispose.assert_called_once_with(device)

    def test_reads_transfer_size_from_descriptor(self, mocker):
        device = MagicMock()
        intf = device.get_active_configuration.return_value.__getitem__.return_value
        # bLength, type 0x21, attributes, wDetachTimeOut, wTransferSize=1024, bcdDFU
        intf.extra_descriptors = [9, 0x21, 0x0B, 0xFF, 0x00, 0x00, 0x04, 0x1A, 0x01]
        mocker.patch("flashtastic.install.dfuse.usb.core.find", return_value=device)
        claim = mocker.patch("flashtastic.install.dfuse.usb.util.claim_interface")

        session = open_dfu_device(BRIDGE_DFU_TARGET)

        claim.assert_called_once_with(device, 0)
        device.set_interface_altsetting.assert_called_once_with(0, 0)
        assert session.transfer_size == 1024
        assert session.device is device
