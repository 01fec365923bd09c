"""The table of access methods available in this package."""

from __future__ import annotations

from .access import PciAccess
from .constants import AccessType
from .device import PciMethods
from .dump import DumpMethods
from .ecam import EcamMethods


def default_methods() -> dict[AccessType, PciMethods]:
    """Return a fresh back-end for every access method the package supports."""
    return {
        AccessType.DUMP: DumpMethods(),
        AccessType.ECAM: EcamMethods(),
    }


def new_access() -> PciAccess:
    """Create an access object with all supported methods configured."""
    return PciAccess(default_methods())