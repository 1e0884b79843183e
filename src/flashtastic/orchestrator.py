"""
Firmware Orchestrator

The caller-facing API: list compatible releases, download a release's asset,
and install a downloaded file using the strategy the device type dictates.

Network operations are coroutines. Installers block for tens of seconds, so
`install_async` runs them on a worker thread and hands the result back to the
event loop.
"""

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from flashtastic.config import FlashtasticConfig
from flashtastic.devices import ConnectedDevice, InstallStrategy, strategy_for
from flashtastic.download.assets import AssetDownloader
from flashtastic.download.async_client import AsyncCatalogClient
from flashtastic.download.catalog import ReleaseCatalogClient
from flashtastic.download.interfaces import Pathish, Release
from flashtastic.exceptions import UnsupportedDeviceError
from flashtastic.install.dfu import install_dfu
from flashtastic.install.mass_storage import install_mass_storage
from flashtastic.log_utils import logger
from flashtastic.progress import ProgressSink


@dataclass(frozen=True)
class InstallJob:
    """A downloaded firmware file bound to its device and install strategy."""

    firmware_path: Path
    device: ConnectedDevice
    strategy: InstallStrategy


class FirmwareOrchestrator:
    """
    Coordinates the catalog client, the asset downloader and the installers.

    Usage:
        async with FirmwareOrchestrator(load_config()) as orchestrator:
            releases = await orchestrator.fetch_releases(device)
            path = await orchestrator.fetch_asset(device, releases[0])
            await orchestrator.install_async(device, path, progress)

    At most one install per physical device may run at a time; callers enforce
    this.
    """

    def __init__(
        self,
        config: Optional[FlashtasticConfig] = None,
        client: Optional[AsyncCatalogClient] = None,
    ) -> None:
        self.config = config or FlashtasticConfig()
        self.client = client or AsyncCatalogClient(
            github_token=self.config.github_token,
            timeout=self.config.request_timeout,
        )
        self.catalog = ReleaseCatalogClient(
            self.client,
            api_url=self.config.github_api_url,
            org=self.config.github_org,
        )
        self.downloader = AssetDownloader(self.client, self.config.download_dir)

    async def __aenter__(self) -> "FirmwareOrchestrator":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        await self.client.close()

    async def fetch_releases(
        self,
        device: ConnectedDevice,
        page: Optional[int] = None,
        per_page: Optional[int] = None,
    ) -> List[Release]:
        return await self.catalog.fetch_releases(device, page=page, per_page=per_page)

    async def fetch_asset(
        self,
        device: ConnectedDevice,
        release: Release,
        progress: Optional[ProgressSink] = None,
    ) -> Path:
        return await self.downloader.fetch_asset(device, release, progress)

    def prepare_job(self, device: ConnectedDevice, firmware_path: Pathish) -> InstallJob:
        """
        Bind a downloaded file to its device and strategy.

        Raises:
            UnsupportedDeviceError: The device type has no install strategy.
        """
        return InstallJob(Path(firmware_path), device, strategy_for(device.device_type))

    def run_job(self, job: InstallJob, progress: Optional[ProgressSink] = None) -> None:
        """Run one install job on the calling thread. Blocks until done."""
        logger.info(
            f"Installing {job.firmware_path.name} on {job.device.describe()} "
            f"via {job.strategy.value}"
        )
        if job.strategy is InstallStrategy.DFU:
            target = job.device.profile.dfu_target
            if target is None:
                raise UnsupportedDeviceError(
                    "no DFU target configured for this device type",
                    job.device.device_type.value,
                )
            install_dfu(job.firmware_path, progress, target)
        elif job.strategy is InstallStrategy.MASS_STORAGE:
            install_mass_storage(
                job.firmware_path,
                progress,
                volume_label=self.config.uf2_volume_label,
                settle_seconds=self.config.uf2_settle_seconds,
            )
        else:
            raise UnsupportedDeviceError(
                f"no installer for strategy {job.strategy.value}",
                job.device.device_type.value,
            )

    def install(
        self,
        device: ConnectedDevice,
        firmware_path: Pathish,
        progress: Optional[ProgressSink] = None,
    ) -> None:
        """
        Install a downloaded firmware file, dispatching on the device type.

        Blocking; see install_async for use from a coroutine.
        """
        self.run_job(self.prepare_job(device, firmware_path), progress)

    async def install_async(
        self,
        device: ConnectedDevice,
        firmware_path: Pathish,
        progress: Optional[ProgressSink] = None,
    ) -> None:
        """
        Run `install` on a worker thread and await its completion.

        Cancelling the awaiting task does not stop a transfer already running.
        """
        job = self.prepare_job(device, firmware_path)
        await asyncio.to_thread(self.run_job, job, progress)
