"""
Asset Downloader

Downloads the compatible binary of a chosen release to a uniquely named local
file.
"""

import tempfile
from pathlib import Path
from typing import Optional

from flashtastic.compatibility import compatible_assets
from flashtastic.devices import ConnectedDevice
from flashtastic.exceptions import FileSystemError, NoCompatibleAssetError
from flashtastic.log_utils import logger
from flashtastic.progress import ProgressSink
from flashtastic.utils import format_bytes, next_download_timestamp, safe_asset_filename

from .async_client import AsyncCatalogClient
from .interfaces import Asset, Pathish, Release


class AssetDownloader:
    """
    Selects a release's compatible asset and streams it to disk.

    Files are named `{timestamp}-{asset_name}` inside `download_dir` (the system
    temp directory by default). Timestamps are strictly increasing within the
    process, so repeated downloads of the same asset never share a path.
    """

    def __init__(
        self,
        client: AsyncCatalogClient,
        download_dir: Optional[Pathish] = None,
    ) -> None:
        self.client = client
        self.download_dir = Path(download_dir or tempfile.gettempdir())

    def select_asset(self, device: ConnectedDevice, release: Release) -> Asset:
        """
        Pick the first compatible asset of the release.

        Raises:
            NoCompatibleAssetError: If no asset matches the device. This can happen
                for a listed release if the device changed since listing.
        """
        matches = compatible_assets(release, device)
        if not matches:
            raise NoCompatibleAssetError(
                release_tag=release.tag_name, details=device.describe()
            )
        if len(matches) > 1:
            logger.warning(
                f"Release {release.tag_name} has {len(matches)} compatible assets; "
                f"using {matches[0].name}"
            )
        return matches[0]

    def target_path_for(self, asset: Asset) -> Path:
        """
        Build a fresh download path for an asset.

        Raises:
            FileSystemError: If the asset name cannot be used as a file name.
        """
        try:
            filename = safe_asset_filename(asset.name)
        except ValueError as e:
            raise FileSystemError("invalid asset file name", details=str(e)) from e
        return self.download_dir / f"{next_download_timestamp()}-{filename}"

    async def fetch_asset(
        self,
        device: ConnectedDevice,
        release: Release,
        progress: Optional[ProgressSink] = None,
    ) -> Path:
        """
        Download the release's compatible asset.

        Returns:
            Path: Local file path, returned only once all bytes are written and
                synced to disk.

        Raises:
            NoCompatibleAssetError: No compatible asset; nothing is downloaded.
            FileSystemError: The file could not be created or written.
            NetworkError / HTTPError / RateLimitError: The download failed.
        """
        asset = self.select_asset(device, release)
        target = self.target_path_for(asset)

        try:
            self.download_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FileSystemError(
                "could not create download directory", str(self.download_dir), str(e)
            ) from e

        logger.info(f"Downloading {asset.name} from {asset.download_url}")
        logger.debug(f"Download target: {target}")
        written = await self.client.download_file(
            asset.download_url, target, progress=progress
        )
        logger.info(f"Downloaded {asset.name} ({format_bytes(written)}) to {target}")
        return target
