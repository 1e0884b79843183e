"""
Flashtastic - firmware installer for USB-attached devices.
"""

from flashtastic.compatibility import compatible_assets, is_compatible, is_usable
from flashtastic.devices import (
    ConnectedDevice,
    DeviceType,
    InstallStrategy,
    detect_devices,
    strategy_for,
)
from flashtastic.download.interfaces import Asset, Release
from flashtastic.orchestrator import FirmwareOrchestrator, InstallJob
from flashtastic.progress import ProgressEvent

__all__ = [
    "Asset",
    "ConnectedDevice",
    "DeviceType",
    "FirmwareOrchestrator",
    "InstallJob",
    "InstallStrategy",
    "ProgressEvent",
    "Release",
    "compatible_assets",
    "detect_devices",
    "is_compatible",
    "is_usable",
    "strategy_for",
]
