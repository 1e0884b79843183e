"""
Release Catalog Client

Lists the firmware releases published for a connected device and keeps only
the ones that carry at least one compatible asset.
"""

from typing import Any, Dict, List, Optional

from flashtastic.compatibility import is_usable
from flashtastic.constants import GITHUB_API_URL, GITHUB_ORG
from flashtastic.devices import ConnectedDevice, repository_for
from flashtastic.exceptions import ParseError
from flashtastic.log_utils import logger

from .async_client import AsyncCatalogClient
from .interfaces import Asset, Release


def _require(mapping: Dict[str, Any], key: str, expected: type, where: str) -> Any:
    value = mapping.get(key)
    if not isinstance(value, expected):
        raise ParseError(
            f"malformed {where}: '{key}' should be {expected.__name__}",
            details=f"got {type(value).__name__}",
        )
    return value


def _optional(
    mapping: Dict[str, Any], key: str, expected: type, where: str, default: Any = None
) -> Any:
    value = mapping.get(key)
    if value is None:
        return default
    if not isinstance(value, expected):
        raise ParseError(
            f"malformed {where}: '{key}' should be {expected.__name__} or null",
            details=f"got {type(value).__name__}",
        )
    return value


def parse_asset(data: Any) -> Asset:
    """
    Build an Asset from one entry of a release's `assets` list.

    Raises:
        ParseError: If the entry is not an object or lacks a name or download URL.
    """
    if not isinstance(data, dict):
        raise ParseError("malformed asset entry", details=type(data).__name__)
    raw_size = data.get("size", 0)
    try:
        size = int(raw_size) if raw_size is not None else 0
    except (TypeError, ValueError):
        size = 0
    return Asset(
        name=_require(data, "name", str, "asset"),
        download_url=_require(data, "browser_download_url", str, "asset"),
        size=size,
        content_type=_optional(data, "content_type", str, "asset"),
    )


def parse_release(data: Any) -> Release:
    """
    Build a Release from one entry of the release listing.

    Raises:
        ParseError: If the entry is not an object, has no tag, has a
            mistyped optional field, or has a malformed asset list.
    """
    if not isinstance(data, dict):
        raise ParseError("malformed release entry", details=type(data).__name__)
    tag_name = _require(data, "tag_name", str, "release").strip()
    if not tag_name:
        raise ParseError("malformed release: empty 'tag_name'")
    where = f"release {tag_name}"
    assets = _require(data, "assets", list, where)
    return Release(
        tag_name=tag_name,
        name=_optional(data, "name", str, where),
        prerelease=_optional(data, "prerelease", bool, where, default=False),
        published_at=_optional(data, "published_at", str, where),
        body=_optional(data, "body", str, where),
        assets=tuple(parse_asset(asset) for asset in assets),
    )


def parse_release_listing(payload: Any) -> List[Release]:
    """
    Parse a full release listing response.

    Raises:
        ParseError: If the payload is not a JSON array of release objects.
    """
    if not isinstance(payload, list):
        raise ParseError(
            "malformed release listing: expected a list",
            details=type(payload).__name__,
        )
    return [parse_release(item) for item in payload]


class ReleaseCatalogClient:
    """
    Fetches installable releases for a device from the GitHub releases API.

    Parameters:
        client (AsyncCatalogClient): HTTP client carrying headers and credential.
        api_url (str): API base URL.
        org (str): Organisation owning the firmware repositories.
    """

    def __init__(
        self,
        client: AsyncCatalogClient,
        api_url: str = GITHUB_API_URL,
        org: str = GITHUB_ORG,
    ) -> None:
        self.client = client
        self.api_url = api_url.rstrip("/")
        self.org = org

    def releases_url(self, repository: str) -> str:
        return f"{self.api_url}/repos/{self.org}/{repository}/releases"

    async def fetch_releases(
        self,
        device: ConnectedDevice,
        page: Optional[int] = None,
        per_page: Optional[int] = None,
    ) -> List[Release]:
        """
        Retrieve all releases compatible with the device, in catalog order.

        Pagination parameters are only sent when given; otherwise the catalog's
        default first page is returned.

        Raises:
            UnsupportedDeviceError: For bootloader/unknown devices, before any
                network call.
            RateLimitError, HTTPError, NetworkError, ParseError: See
                AsyncCatalogClient.get_json.
        """
        repository = repository_for(device.device_type)

        params: Dict[str, Any] = {}
        if per_page is not None:
            params["per_page"] = per_page
        if page is not None:
            params["page"] = page

        url = self.releases_url(repository)
        logger.info(f"Fetching releases from {url}")
        payload = await self.client.get_json(url, params=params)
        releases = parse_release_listing(payload)

        compatible = [release for release in releases if is_usable(release, device)]
        logger.debug(
            f"{len(compatible)} of {len(releases)} releases in {repository} "
            f"are compatible with {device.describe()}"
        )
        return compatible
