"""
Core data structures for the Flashtastic download subsystem.

Releases and assets are parsed once from the catalog response and never
mutated afterwards.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple, Union

Pathish = Union[str, Path]


@dataclass(frozen=True)
class Asset:
    """Represents a downloadable binary attached to a release."""

    name: str
    """The filename of the asset"""

    download_url: str
    """Direct URL to download the asset"""

    size: int = 0
    """File size in bytes (0 when the catalog did not report it)"""

    content_type: Optional[str] = None
    """MIME type of the asset"""


@dataclass(frozen=True)
class Release:
    """Represents a firmware release from a repository."""

    tag_name: str
    """The release tag/version identifier (e.g., 'v2.7.8')"""

    name: Optional[str] = None
    """Human readable release title"""

    prerelease: bool = False
    """Whether this is a prerelease version"""

    published_at: Optional[str] = None
    """ISO 8601 timestamp when the release was published"""

    body: Optional[str] = None
    """Release notes/markdown content"""

    assets: Tuple[Asset, ...] = field(default_factory=tuple)
    """Downloadable assets in catalog order"""

    @property
    def version(self) -> str:
        return self.tag_name
