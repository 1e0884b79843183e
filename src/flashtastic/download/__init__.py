"""
Flashtastic Download Subsystem

Release catalog access and firmware asset downloads:
- interfaces: Release and Asset records
- async_client: aiohttp session, headers and error classification
- catalog: compatible release listing
- assets: compatible asset download
"""

from .assets import AssetDownloader
from .async_client import AsyncCatalogClient, create_async_client
from .catalog import ReleaseCatalogClient, parse_release_listing
from .interfaces import Asset, Release

__all__ = [
    "Asset",
    "Release",
    "AsyncCatalogClient",
    "create_async_client",
    "ReleaseCatalogClient",
    "parse_release_listing",
    "AssetDownloader",
]
