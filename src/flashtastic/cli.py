# src/flashtastic/cli.py

import argparse
import asyncio
import sys
from pathlib import Path
from typing import List, Optional

from pick import pick
from rich.console import Console
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TextColumn,
    TransferSpeedColumn,
)
from rich.table import Table

from flashtastic import log_utils
from flashtastic.config import FlashtasticConfig, load_config
from flashtastic.devices import (
    ConnectedDevice,
    DeviceType,
    InstallStrategy,
    detect_devices,
    strategy_for,
)
from flashtastic.download.interfaces import Release
from flashtastic.exceptions import (
    ConfigurationError,
    DeviceNotFoundError,
    DfuTeardownError,
    DiskNotFoundError,
    FileSystemError,
    FlashtasticError,
    NetworkError,
    NoCompatibleAssetError,
    ParseError,
    RateLimitError,
    UnsupportedDeviceError,
    UsbError,
)
from flashtastic.exceptions import HTTPError as CatalogHTTPError
from flashtastic.orchestrator import FirmwareOrchestrator
from flashtastic.progress import CallbackProgress, ProgressEvent
from flashtastic.utils import get_version

EXIT_OK = 0
EXIT_USAGE = 2
EXIT_NETWORK = 3
EXIT_NOT_FOUND = 4
EXIT_DEVICE = 5
EXIT_FILESYSTEM = 6

console = Console()


def describe_error(error: FlashtasticError) -> tuple:
    """
    Turn a typed error into an actionable message and an exit code.

    Returns:
        tuple: (message, exit_code)
    """
    if isinstance(error, RateLimitError):
        return (
            "GitHub rate limited the request; try again later "
            "or set GITHUB_TOKEN for a higher limit.",
            EXIT_NETWORK,
        )
    if isinstance(error, (NetworkError, CatalogHTTPError, ParseError)):
        return (f"Could not reach the release catalog: {error}", EXIT_NETWORK)
    if isinstance(error, UnsupportedDeviceError):
        return (
            "This device has no firmware releases (it may be in bootloader mode).",
            EXIT_USAGE,
        )
    if isinstance(error, NoCompatibleAssetError):
        return (f"No compatible firmware found: {error}", EXIT_NOT_FOUND)
    if isinstance(error, (DeviceNotFoundError, DiskNotFoundError)):
        return (f"{error}; reconnect the device and try again.", EXIT_NOT_FOUND)
    if isinstance(error, DfuTeardownError):
        return (
            "Firmware was written but the device did not restart cleanly; "
            f"unplug and reconnect it to confirm the update ({error}).",
            EXIT_DEVICE,
        )
    if isinstance(error, UsbError):
        return (f"USB error: {error}. Check the cable and port.", EXIT_DEVICE)
    if isinstance(error, FileSystemError):
        return (f"File error: {error}", EXIT_FILESYSTEM)
    if isinstance(error, ConfigurationError):
        return (f"Configuration error: {error}", EXIT_USAGE)
    return (str(error), 1)


def _is_interactive() -> bool:
    return sys.stdin.isatty() and sys.stdout.isatty()


def resolve_device(device_name: Optional[str]) -> ConnectedDevice:
    """
    Return the device given on the command line or the one attached.

    Raises:
        DeviceNotFoundError: Nothing supported is attached.
    """
    if device_name:
        return ConnectedDevice(device_type=DeviceType(device_name))

    devices = detect_devices()
    if not devices:
        raise DeviceNotFoundError("no supported device connected")
    if len(devices) == 1:
        return devices[0]
    if _is_interactive():
        _, index = pick([d.describe() for d in devices], "Select a device:")
        return devices[index]
    log_utils.logger.warning(
        f"{len(devices)} devices connected; using {devices[0].describe()}"
    )
    return devices[0]


def select_release(
    releases: List[Release], tag: Optional[str] = None
) -> Release:
    """
    Choose a release by tag, interactively, or the newest one.

    Raises:
        NoCompatibleAssetError: No releases, or the requested tag is not among them.
    """
    if not releases:
        raise NoCompatibleAssetError("no compatible releases found")
    if tag:
        for release in releases:
            if release.tag_name == tag:
                return release
        raise NoCompatibleAssetError(
            "release not found or not compatible", release_tag=tag
        )
    if _is_interactive() and len(releases) > 1:
        options = [_release_label(r) for r in releases]
        _, index = pick(options, "Select a firmware release:", indicator="*")
        return releases[index]
    return releases[0]


def _release_label(release: Release) -> str:
    label = release.tag_name
    if release.prerelease:
        label += " (prerelease)"
    if release.published_at:
        label += f"  {release.published_at[:10]}"
    return label


def _progress_bar() -> Progress:
    return Progress(
        TextColumn("[bold]{task.description}"),
        BarColumn(),
        DownloadColumn(),
        TransferSpeedColumn(),
        console=console,
    )


def _progress_sink(progress: Progress, description: str) -> CallbackProgress:
    task_id = progress.add_task(description, total=None)

    def update(event: ProgressEvent) -> None:
        progress.update(task_id, completed=event.transferred, total=event.total)

    return CallbackProgress(update)


def print_devices(devices: List[ConnectedDevice]) -> None:
    if not devices:
        console.print("No supported devices connected.")
        return
    table = Table("Device", "USB ID", "Serial", "Install")
    for device in devices:
        usb_id = (
            f"{device.vendor_id:04x}:{device.product_id:04x}"
            if device.vendor_id is not None and device.product_id is not None
            else "-"
        )
        strategy = device.profile.strategy
        table.add_row(
            device.device_type.value,
            usb_id,
            device.serial or "-",
            strategy.value if strategy else "bootloader",
        )
    console.print(table)


def print_releases(releases: List[Release]) -> None:
    if not releases:
        console.print("No compatible releases found.")
        return
    table = Table("Version", "Published", "Assets")
    for release in releases:
        table.add_row(
            release.tag_name + (" (prerelease)" if release.prerelease else ""),
            (release.published_at or "-")[:10],
            ", ".join(asset.name for asset in release.assets),
        )
    console.print(table)


async def _releases(args: argparse.Namespace, config: FlashtasticConfig) -> int:
    device = resolve_device(args.device)
    async with FirmwareOrchestrator(config) as orchestrator:
        releases = await orchestrator.fetch_releases(
            device, page=args.page, per_page=args.per_page
        )
    print_releases(releases)
    return EXIT_OK


async def _download(
    orchestrator: FirmwareOrchestrator,
    device: ConnectedDevice,
    tag: Optional[str],
) -> Path:
    releases = await orchestrator.fetch_releases(device)
    release = select_release(releases, tag)
    with _progress_bar() as progress:
        return await orchestrator.fetch_asset(
            device, release, _progress_sink(progress, release.tag_name)
        )


async def _download_command(args: argparse.Namespace, config: FlashtasticConfig) -> int:
    device = resolve_device(args.device)
    async with FirmwareOrchestrator(config) as orchestrator:
        path = await _download(orchestrator, device, args.release)
    console.print(f"Downloaded firmware to {path}")
    return EXIT_OK


def _confirm_bootloader(device: ConnectedDevice, assume_yes: bool) -> None:
    if assume_yes or not _is_interactive():
        return
    if strategy_for(device.device_type) is InstallStrategy.DFU:
        prompt = "Put the device in DFU mode, then press Enter to flash..."
    else:
        prompt = "Put the device in bootloader (UF2) mode, then press Enter to flash..."
    input(prompt)


async def _flash(args: argparse.Namespace, config: FlashtasticConfig) -> int:
    device = resolve_device(args.device)
    # Fail before downloading if the device can never be installed to
    strategy_for(device.device_type)

    async with FirmwareOrchestrator(config) as orchestrator:
        if args.file:
            firmware_path = Path(args.file)
        else:
            firmware_path = await _download(orchestrator, device, args.release)

        _confirm_bootloader(device, args.yes)
        with _progress_bar() as progress:
            await orchestrator.install_async(
                device, firmware_path, _progress_sink(progress, firmware_path.name)
            )
    console.print(f"Installed {firmware_path.name} on {device.device_type.value}")
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Flashtastic - firmware installer for USB devices"
    )
    parser.add_argument(
        "--log-level", help="Log level (DEBUG, INFO, WARNING, ERROR)"
    )
    parser.add_argument("--config", help="Path to a flashtastic.yaml file")
    parser.add_argument(
        "--log-dir", help="Also write a rotating flashtastic.log in this directory"
    )
    subparsers = parser.add_subparsers(dest="command")

    device_choices = [
        t.value for t in DeviceType if t is not DeviceType.UNKNOWN
    ]

    def add_device_argument(sub: argparse.ArgumentParser) -> None:
        sub.add_argument(
            "--device",
            choices=device_choices,
            help="Device type to use instead of auto-detection",
        )

    subparsers.add_parser("devices", help="List connected devices")

    releases_parser = subparsers.add_parser(
        "releases", help="List firmware releases compatible with the device"
    )
    add_device_argument(releases_parser)
    releases_parser.add_argument("--page", type=int, help="Catalog page number")
    releases_parser.add_argument("--per-page", type=int, help="Releases per page")

    download_parser = subparsers.add_parser(
        "download", help="Download firmware for the device"
    )
    add_device_argument(download_parser)
    download_parser.add_argument("--release", help="Release tag (default: newest)")

    flash_parser = subparsers.add_parser(
        "flash", help="Download and install firmware on the device"
    )
    add_device_argument(flash_parser)
    source_group = flash_parser.add_mutually_exclusive_group()
    source_group.add_argument("--release", help="Release tag (default: newest)")
    source_group.add_argument("--file", help="Install a local firmware file")
    flash_parser.add_argument(
        "--yes", "-y", action="store_true", help="Do not wait for confirmation"
    )

    subparsers.add_parser("version", help="Display Flashtastic version")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """
    Entry point for the Flashtastic command-line interface.

    Parses arguments, loads configuration and dispatches subcommands: devices,
    releases, download, flash and version. Typed errors are reported with an
    actionable message and a distinct exit code.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return EXIT_USAGE

    if args.command == "version":
        console.print(f"Flashtastic v{get_version()}")
        return EXIT_OK

    try:
        config = load_config(Path(args.config) if args.config else None)
        log_level = args.log_level or config.log_level
        if log_level:
            log_utils.set_log_level(log_level)
        log_dir = Path(args.log_dir) if args.log_dir else config.log_file_dir
        if log_dir:
            try:
                log_utils.add_file_logging(log_dir, log_level or "INFO")
            except OSError as e:
                raise FileSystemError(
                    "could not open log file", str(log_dir), str(e)
                ) from e

        if args.command == "devices":
            print_devices(detect_devices())
            return EXIT_OK
        if args.command == "releases":
            return asyncio.run(_releases(args, config))
        if args.command == "download":
            return asyncio.run(_download_command(args, config))
        if args.command == "flash":
            return asyncio.run(_flash(args, config))
    except FlashtasticError as error:
        message, code = describe_error(error)
        log_utils.logger.error(message)
        return code
    except KeyboardInterrupt:
        log_utils.logger.info("Aborted.")
        return 130

    parser.print_help()
    return EXIT_USAGE


def cli() -> None:
    sys.exit(main())


if __name__ == "__main__":
    cli()
