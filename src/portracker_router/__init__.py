"""portracker router integration -- OpenWrt port-forwarding over SSH or LuCI RPC."""

from importlib import metadata as _metadata
from pathlib import Path as _Path

_DIST_NAME = "portracker-router"


def _read_version() -> str:
    """Prefer the repo-level VERSION file, then installed package metadata."""
    for parent in _Path(__file__).resolve().parents:
        candidate = parent / "VERSION"
        if candidate.is_file():
            return candidate.read_text().strip()
    try:
        return _metadata.version(_DIST_NAME)
    except _metadata.PackageNotFoundError:
        return "0.0.0"


__version__ = _read_version()
