import time
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import platformdirs
import pytest

from flashtastic.devices import ConnectedDevice, DeviceType
from flashtastic.download.interfaces import Asset, Release

_ASYNC_NETWORK_BLOCK_MSG = (
    "Async network access is blocked during tests. Mock aiohttp.ClientSession."
)


async def _async_block_network(*_args, **_kwargs):
    """
    Prevent async network calls during tests by raising a RuntimeError.

    Raises:
        RuntimeError: `_ASYNC_NETWORK_BLOCK_MSG` explaining that async network access is blocked.
    """
    raise RuntimeError(_ASYNC_NETWORK_BLOCK_MSG)


def _sync_block_network(*_args, **_kwargs):
    raise RuntimeError(_ASYNC_NETWORK_BLOCK_MSG)


def pytest_configure(config):
    """
    Register the markers used across the suite.
    """
    config.addinivalue_line("markers", "asyncio: mark test as an asyncio test")
    config.addinivalue_line("markers", "unit: fast, isolated unit tests")
    config.addinivalue_line(
        "markers", "core_downloads: release catalog and asset download tests"
    )
    config.addinivalue_line("markers", "install: DFU and mass-storage installer tests")
    config.addinivalue_line("markers", "user_interface: command-line interface tests")


@pytest.fixture(autouse=True)
def _isolate_test_environment(tmp_path_factory, monkeypatch):
    """
    Point platformdirs and the environment at a temporary directory layout.

    Also removes GITHUB_TOKEN and FLASHTASTIC_LOG_LEVEL so host settings never
    leak into a test.
    """
    base = tmp_path_factory.mktemp("flashtastic")
    config_dir = base / "config"
    cache_dir = base / "cache"
    log_dir = base / "log"
    for path in (config_dir, cache_dir, log_dir):
        path.mkdir(parents=True, exist_ok=True)

    monkeypatch.setenv("XDG_CONFIG_HOME", str(config_dir))
    monkeypatch.setenv("XDG_CACHE_HOME", str(cache_dir))
    monkeypatch.delenv("GITHUB_TOKEN", raising=False)
    monkeypatch.delenv("FLASHTASTIC_LOG_LEVEL", raising=False)

    monkeypatch.setattr(
        platformdirs, "user_config_dir", lambda *_args, **_kwargs: str(config_dir)
    )
    monkeypatch.setattr(
        platformdirs, "user_cache_dir", lambda *_args, **_kwargs: str(cache_dir)
    )
    monkeypatch.setattr(
        platformdirs, "user_log_dir", lambda *_args, **_kwargs: str(log_dir)
    )


@pytest.fixture(autouse=True)
def _block_network(monkeypatch):
    """
    Replace aiohttp's HTTP entry points with blockers for every test.

    Tests that exercise the client patch `_ensure_session` or the session's
    `get` themselves.
    """
    import aiohttp

    monkeypatch.setattr(aiohttp, "request", _async_block_network)
    for method in ("request", "get", "post", "put", "delete", "head", "patch"):
        monkeypatch.setattr(aiohttp.ClientSession, method, _sync_block_network)


@pytest.fixture(autouse=True)
def _mock_time_sleep(monkeypatch):
    """
    Make time.sleep instant for all tests to prevent delays.

    The UF2 settle interval and DFU status polling both sleep. Tests that
    need to observe the call patch time.sleep again inside the test.
    """
    monkeypatch.setattr(time, "sleep", lambda *_args, **_kwargs: None)


# =============================================================================
# Device and Release Fixtures
# =============================================================================


@pytest.fixture
def bridge4_device():
    return ConnectedDevice(
        device_type=DeviceType.BRIDGE4,
        serial="B4-0001",
        vendor_id=0x1209,
        product_id=0xB004,
    )


@pytest.fixture
def uloop_device():
    return ConnectedDevice(device_type=DeviceType.ULOOP, serial="UL-0001")


def _make_asset(name: str) -> Asset:
    return Asset(
        name=name,
        download_url=f"https://github.com/flashtastic-devices/releases/download/{name}",
        size=4096,
        content_type="application/octet-stream",
    )


def _make_release(tag: str, *asset_names: str, prerelease: bool = False) -> Release:
    return Release(
        tag_name=tag,
        name=f"Release {tag}",
        prerelease=prerelease,
        published_at="2024-05-01T12:00:00Z",
        assets=tuple(_make_asset(name) for name in asset_names),
    )


@pytest.fixture
def make_release():
    """Factory building a Release from a tag and asset file names."""
    return _make_release


@pytest.fixture
def sample_release_data():
    """Raw release listing as returned by the GitHub releases API."""
    return [
        {
            "tag_name": "v1.3.0",
            "name": "Bridge 1.3.0",
            "prerelease": False,
            "published_at": "2024-06-01T00:00:00Z",
            "body": "## Changes\n\n- Faster boot",
            "assets": [
                {
                    "name": "bridge4-v1.3.0.bin",
                    "browser_download_url": "https://example.com/bridge4-v1.3.0.bin",
                    "size": 65536,
                    "content_type": "application/octet-stream",
                },
                {
                    "name": "bridge6-v1.3.0.bin",
                    "browser_download_url": "https://example.com/bridge6-v1.3.0.bin",
                    "size": 65536,
                    "content_type": "application/octet-stream",
                },
            ],
        },
        {
            "tag_name": "v1.2.0",
            "name": "Bridge 1.2.0",
            "prerelease": False,
            "published_at": "2024-04-01T00:00:00Z",
            "body": "Previous release",
            "assets": [
                {
                    "name": "bridge6-v1.2.0.bin",
                    "browser_download_url": "https://example.com/bridge6-v1.2.0.bin",
                    "size": 65536,
                }
            ],
        },
    ]


# =============================================================================
# Async Test Fixtures
# =============================================================================


def _make_async_iter(items):
    async def _iterate():
        for item in items:
            yield item

    return _iterate()


@pytest.fixture
def mock_async_response():
    """
    Provide a factory that creates mock aiohttp responses usable as `async with` targets.

    Parameters of the factory:
        status (int): HTTP status code.
        headers (dict | None): Response headers.
        text (str): Body text; `await response.read()` returns it UTF-8 encoded.
        body (bytes | None): Raw body returned by `await response.read()`, overriding `text`.
        content_chunks (Iterable[bytes] | None): Chunks yielded by `content.iter_chunked`.
        content_length (int | None): Value of `response.content_length`.
    """

    def _create_response(
        status=200,
        headers=None,
        text="[]",
        content_chunks=None,
        content_length=None,
        body=None,
    ):
        response = MagicMock()
        response.status = status
        response.headers = headers or {}
        response.content_length = content_length
        response.text = AsyncMock(return_value=text)
        response.read = AsyncMock(
            return_value=body if body is not None else text.encode("utf-8")
        )
        response.content.iter_chunked = MagicMock(
            return_value=_make_async_iter(content_chunks or [])
        )
        response.__aenter__ = AsyncMock(return_value=response)
        response.__aexit__ = AsyncMock(return_value=None)
        return response

    return _create_response


@pytest.fixture
def mock_session():
    """A stand-in aiohttp session whose `get` returns whatever the test sets."""
    session = MagicMock()
    session.closed = False
    session.close = AsyncMock()
    return session


@pytest.fixture
def catalog_client(mock_session, mocker):
    """
    AsyncCatalogClient wired to `mock_session` instead of a real ClientSession.
    """
    from flashtastic.download.async_client import AsyncCatalogClient

    client = AsyncCatalogClient(github_token="test-token")  # noqa: S106
    mocker.patch.object(client, "_ensure_session", AsyncMock(return_value=mock_session))
    return client


@pytest.fixture
def firmware_file(tmp_path) -> Path:
    """A 5000-byte firmware image on disk."""
    path = tmp_path / "bridge4-v1.3.0.bin"
    path.write_bytes(bytes(range(256)) * 19 + b"\x00" * 136)
    return path
