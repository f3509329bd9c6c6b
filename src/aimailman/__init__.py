"""aimailman package initialisation."""

from importlib import metadata


def _discover_version() -> str:
    """Return the installed package version, falling back to a dev marker."""
    try:
        return metadata.version("aimailman")
    except metadata.PackageNotFoundError:  # pragma: no cover - running from a source checkout
        return "0.0.0"


__all__ = ["__version__"]
__version__ = _discover_version()
