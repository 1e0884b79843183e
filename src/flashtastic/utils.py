# src/flashtastic/utils.py
import importlib.metadata
import os
import threading
import time
from typing import Optional

# Cache for the User-Agent string to avoid repeated metadata lookups
_USER_AGENT_CACHE: Optional[str] = None

# Last timestamp handed out by next_download_timestamp()
_last_download_timestamp = 0
_download_timestamp_lock = threading.Lock()


def get_version() -> str:
    """
    Return the installed flashtastic version, or `unknown` when not installed.
    """
    try:
        return importlib.metadata.version("flashtastic")
    except importlib.metadata.PackageNotFoundError:
        return "unknown"


def get_user_agent() -> str:
    """
    Get the User-Agent string used for HTTP requests.

    Returns:
        The string `flashtastic/{version}`, where `{version}` is the installed package version or `unknown` if the version cannot be determined.
    """
    global _USER_AGENT_CACHE

    if _USER_AGENT_CACHE is None:
        _USER_AGENT_CACHE = f"flashtastic/{get_version()}"

    return _USER_AGENT_CACHE


def next_download_timestamp() -> int:
    """
    Return a wall-clock timestamp in milliseconds that is strictly greater than
    every value previously returned in this process.

    Two downloads started within the same millisecond therefore still get
    distinct file name prefixes.
    """
    global _last_download_timestamp

    with _download_timestamp_lock:
        now = time.time_ns() // 1_000_000
        if now <= _last_download_timestamp:
            now = _last_download_timestamp + 1
        _last_download_timestamp = now
        return now


def safe_asset_filename(asset_name: str) -> str:
    """
    Reduce an asset name from the catalog to a bare file name.

    Directory components are dropped so a hostile name such as
    `../../etc/passwd` cannot escape the download directory.

    Raises:
        ValueError: If nothing usable is left after stripping.
    """
    name = os.path.basename(asset_name.replace("\\", "/")).strip()
    if not name or name in (".", ".."):
        raise ValueError(f"invalid asset name: {asset_name!r}")
    return name


def format_bytes(num_bytes: int) -> str:
    """Render a byte count with a binary unit suffix (e.g. `1.5 KiB`)."""
    if num_bytes < 1024:
        return f"{num_bytes} B"
    if num_bytes < 1024 * 1024:
        return f"{num_bytes / 1024:.1f} KiB"
    return f"{num_bytes / (1024 * 1024):.1f} MiB"
