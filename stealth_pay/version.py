"""
StealthPay - Version Management
=================================
Versioning semantico del software e compatibilita' del formato meta-address.

Security Level: MEDIUM
Last Updated: 2026-10-18
Version: 1.0.0
"""

from typing import NamedTuple

from stealth_pay.constants import SUPPORTED_VERSIONS


# ============================================================================
# VERSION INFO
# ============================================================================

class VersionInfo(NamedTuple):
    """Version information structure"""
    major: int
    minor: int
    patch: int
    prerelease: str = ""
    build: str = ""


VERSION = VersionInfo(
    major=1,
    minor=0,
    patch=0,
)


def get_version_string() -> str:
    """
    Get version as string.
    
    Example:
        >>> get_version_string()
        '1.0.0'
    """
    version_str = f"{VERSION.major}.{VERSION.minor}.{VERSION.patch}"
    
    if VERSION.prerelease:
        version_str += f"-{VERSION.prerelease}"
    
    if VERSION.build:
        version_str += f"+{VERSION.build}"
    
    return version_str


def is_meta_address_version_supported(version: int) -> bool:
    """Versione del meta-address gestita da questo build"""
    return version in SUPPORTED_VERSIONS


def get_build_info() -> dict:
    return {
        "version": get_version_string(),
        "meta_address_versions": list(SUPPORTED_VERSIONS),
    }


# ============================================================================
# EXPORT
# ============================================================================

__version__ = get_version_string()
__version_info__ = VERSION

__all__ = [
    "__version__",
    "__version_info__",
    "VERSION",
    "get_version_string",
    "is_meta_address_version_supported",
    "get_build_info",
]
