# =============================================================================
# topicbridge Main Package - Dynamic Version Loading
# =============================================================================
"""
topicbridge - chat to forum-topic bridge

Version is loaded from installed package metadata (pyproject.toml).
"""

from __future__ import annotations


# =============================================================================
# DYNAMIC VERSION LOADING
# =============================================================================
def _get_version() -> str:
    """
    Get package version from installed metadata.

    Falls back to reading pyproject.toml when running from a source checkout.
    """
    from importlib.metadata import version, PackageNotFoundError

    try:
        return version("topicbridge")
    except PackageNotFoundError:
        pass

    import tomllib
    from pathlib import Path

    pyproject_path = Path(__file__).parent.parent / "pyproject.toml"
    if pyproject_path.exists():
        with open(pyproject_path, "rb") as f:
            return tomllib.load(f)["project"]["version"]

    return "0.0.0-unknown"


__version__: str = _get_version()
__description__: str = "topicbridge - chat to forum-topic bridge"

# =============================================================================
# EXPORTS
# =============================================================================
__all__ = [
    "__version__",
    "__description__",
]
