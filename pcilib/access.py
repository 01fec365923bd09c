"""The access object: back-end selection, named parameters and the device list."""

from __future__ import annotations

import sys
from dataclasses import dataclass
from typing import Callable, Iterator, Mapping, Optional

from .constants import ACCESS_MAX, AccessType
from .device import PciDev, PciError, PciMethods

# When the method is AUTO, back-ends are probed in this order.
PROBE_SEQUENCE = (
    # System-specific methods
    AccessType.SYS_BUS_PCI,
    AccessType.PROC_BUS_PCI,
    AccessType.FBSD_DEVICE,
    AccessType.AIX_DEVICE,
    AccessType.NBSD_LIBPCI,
    AccessType.OBSD_DEVICE,
    AccessType.DARWIN,
    AccessType.SYLIXOS_DEVICE,
    AccessType.HURD,
    AccessType.WIN32_CFGMGR32,
    AccessType.WIN32_KLDBG,
    AccessType.WIN32_SYSDBG,
    # Low-level methods poking the hardware directly
    AccessType.ECAM,
    AccessType.I386_TYPE1,
    AccessType.I386_TYPE2,
    AccessType.MMIO_TYPE1_EXT,
    AccessType.MMIO_TYPE1,
)


@dataclass
class PciParam:
    """A named parameter of the library or of a back-end."""

    name: str
    value: str
    help: str


class PciAccess:
    """Entry point of the library: holds options, parameters and found devices."""

    def __init__(self, methods: Optional[Mapping[int, PciMethods]] = None):
        table: dict[int, PciMethods] = {}
        for index, backend in (methods or {}).items():
            index = int(index)
            if not 0 <= index < ACCESS_MAX:
                raise ValueError(f"Access method index out of range: {index}")
            if backend is not None:
                table[index] = backend
        self.method_table = table

        self.method: int = AccessType.AUTO
        self.writeable = False
        self.buscentric = False
        self.numeric_ids = 0
        self.id_lookup_mode = 0
        self.debugging = 0

        self.on_error: Optional[Callable[[str], None]] = None
        self.on_warning: Optional[Callable[[str], None]] = None
        self.on_debug: Optional[Callable[[str], None]] = None

        self.devices: list[PciDev] = []
        self.methods: Optional[PciMethods] = None
        self.params: dict[str, PciParam] = {}
        self.fd = -1
        self.aux = None

        for index in sorted(self.method_table):
            self.method_table[index].config(self)

    # Messages

    def error(self, msg: str) -> None:
        """Report a fatal error; never returns."""
        if self.on_error is not None:
            self.on_error(msg)
        raise PciError(msg)

    def warning(self, msg: str) -> None:
        if self.on_warning is not None:
            self.on_warning(msg)
        else:
            sys.stderr.write(f"pcilib: {msg}\n")

    def debug(self, msg: str) -> None:
        if not self.debugging:
            return
        if self.on_debug is not None:
            self.on_debug(msg)
        else:
            sys.stdout.write(msg)

    # Parameters

    def define_param(self, name: str, value: str, help: str) -> None:
        self.params[name] = PciParam(name, value, help)

    def get_param(self, name: str) -> Optional[str]:
        param = self.params.get(name)
        return param.value if param is not None else None

    def set_param(self, name: str, value: str) -> None:
        """Change a defined parameter; KeyError if there is no such parameter."""
        param = self.params.get(name)
        if param is None:
            raise KeyError(name)
        param.value = value

    def walk_params(self) -> Iterator[PciParam]:
        return iter(list(self.params.values()))

    # Methods

    def lookup_method(self, name: str) -> Optional[AccessType]:
        """Return the access method with the given name, or None."""
        for index in range(ACCESS_MAX):
            backend = self.method_table.get(index)
            if backend is not None and backend.name == name:
                return AccessType(index)
        return None

    def get_method_name(self, index: int) -> Optional[str]:
        """Name of a method; "" if unavailable, None if index is out of range."""
        if index < 0 or index >= ACCESS_MAX:
            return None
        backend = self.method_table.get(index)
        return backend.name if backend is not None else ""

    def _init_internal(self, skip_method: Optional[int] = None) -> bool:
        if self.method != AccessType.AUTO:
            backend = self.method_table.get(int(self.method))
            if int(self.method) >= ACCESS_MAX or backend is None:
                self.error("This access method is not supported.")
            self.methods = backend
        else:
            for index in PROBE_SEQUENCE:
                backend = self.method_table.get(int(index))
                if backend is None or skip_method == index:
                    continue
                self.debug(f"Trying method {backend.name}...")
                if backend.detect(self):
                    self.debug("...OK\n")
                    self.methods = backend
                    self.method = index
                    break
                self.debug("...No.\n")
            if self.methods is None:
                return False
        self.debug(f"Decided to use {self.methods.name}\n")
        self.methods.init(self)
        return True

    def init(self) -> None:
        """Select and initialise an access method."""
        if not self._init_internal():
            self.error("Cannot find any working access method.")

    # Devices

    def alloc_dev(self) -> PciDev:
        return PciDev(self)

    def get_dev(self, domain: int, bus: int, dev: int, func: int) -> PciDev:
        """Create a device with the given address without scanning for it."""
        return PciDev(self, domain, bus, dev, func)

    def link_dev(self, dev: PciDev) -> None:
        self.devices.insert(0, dev)

    def scan_bus(self) -> None:
        self.methods.scan(self)

    def clone(self) -> "PciAccess":
        other = PciAccess(self.method_table)
        other.writeable = self.writeable
        other.buscentric = self.buscentric
        other.debugging = self.debugging
        other.on_error = self.on_error
        other.on_warning = self.on_warning
        other.on_debug = self.on_debug
        return other

    def cleanup(self) -> None:
        """Release all devices and the selected back-end."""
        for dev in self.devices:
            dev.close()
        self.devices.clear()
        if self.methods is not None:
            self.methods.cleanup(self)
            self.methods = None
        self.params.clear()

    def __enter__(self) -> "PciAccess":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cleanup()