"""
Forced Inclusion Enforcer Version.
"""

__version__ = "0.3.0"
__version_info__ = (0, 3, 0)

VERSION_METADATA = {
    "name": "Forced Inclusion Enforcer",
    "version": __version__,
    "state_schema": "1",
}


def get_version() -> str:
    """Return version string."""
    return __version__


def get_version_info() -> tuple:
    """Return version tuple."""
    return __version_info__
