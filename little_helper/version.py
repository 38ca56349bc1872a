"""Version information for the Little Helper service."""

from importlib.metadata import PackageNotFoundError, version

_VERSION: str | None = None


def get_version() -> str:
    """
    Get the installed package version.

    Returns:
        Version string (e.g., "0.1.0"), or "unknown" when running from an
        uninstalled checkout
    """
    global _VERSION

    if _VERSION is not None:
        return _VERSION

    try:
        _VERSION = version("little-helper")
    except PackageNotFoundError:
        return "unknown"
    return _VERSION
