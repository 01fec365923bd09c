"""Access to PCI configuration space: scanning, filtering, capabilities, dumps and ECAM."""

__version__ = "3.10.0"
__all__ = [
    "access",
    "acpi",
    "backends",
    "cli",
    "constants",
    "device",
    "dump",
    "ecam",
    "emulated",
    "filter",
    "generic",
]