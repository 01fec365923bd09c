"""Access method using the memory mapped PCIe Enhanced Configuration Access Mechanism."""

from __future__ import annotations

import glob
import mmap
import os
import re
import string
import sys
from dataclasses import dataclass
from typing import Optional

from .acpi import ECAM_BUS_SIZE, OFF_MAX, find_mcfg
from .device import PciDev, PciMethods
from .generic import block_read, block_write, generic_fill_info, scan_domain

PATH_DEVMEM_DEVICE = "/dev/mem"
PATH_ACPI_MCFG = "/sys/firmware/acpi/tables/MCFG*"
PATH_EFI_SYSTAB = "/sys/firmware/efi/systab"

_INT_MAX = 0x7FFFFFFF
_CONFIG_SPACE_SIZE = 4096
_MAX_SEGMENTS = 0xFFFF // 32 * 32
_PAGE = mmap.ALLOCATIONGRANULARITY
_WIDTHS = {1: "B", 2: "H", 4: "I"}
_NUMBER = re.compile(r"\s*([+-]?)(?:0[xX](?=[0-9a-fA-F]))?([0-9a-fA-F]+)")


@dataclass(frozen=True)
class EcamRange:
    """A window of physical memory holding configuration space of a bus range."""

    domain: int
    start_bus: int
    end_bus: int
    address: int
    length: int


def _strtol(text: str, pos: int) -> tuple[int, int]:
    """Parse a hex number at pos like strtol; (0, pos) when there are no digits."""
    match = _NUMBER.match(text, pos)
    if match is None:
        return 0, pos
    value = int(match.group(2), 16)
    if match.group(1) == "-":
        value = -value
    return value, match.end()


def _is_hex(text: str, pos: int) -> bool:
    return pos < len(text) and text[pos] in string.hexdigits


def _parse_entry(entry: str) -> Optional[EcamRange]:
    """Parse "[domain:]start_bus[-end_bus]:start_addr[+length]"; None if invalid."""
    sep1 = entry.find(":")
    if sep1 < 0:
        return None
    sep2 = entry.find(":", sep1 + 1)
    if sep2 < 0:
        sep2, sep1 = sep1, -1

    if sep1 < 0:
        domain = 0
    else:
        if not _is_hex(entry, 0):
            return None
        domain, end = _strtol(entry, 0)
        if end != sep1 or domain < 0 or domain > _INT_MAX:
            return None

    start_bus, end = _strtol(entry, sep1 + 1 if sep1 >= 0 else 0)
    if start_bus < 0 or start_bus > 0xFF:
        return None
    buses = 0
    end_bus = start_bus

    if end != sep2:
        if end >= len(entry) or entry[end] != "-":
            return None
        end_bus, end = _strtol(entry, end + 1)
        if end != sep2 or end_bus < 0 or end_bus > 0xFF:
            return None
        buses = end_bus - start_bus + 1
        if buses <= 0:
            return None

    if not _is_hex(entry, sep2 + 1):
        return None
    address, end = _strtol(entry, sep2 + 1)
    if address & 3 or address > OFF_MAX:
        return None

    if end == len(entry):
        if buses <= 0:
            buses = 0xFF - start_bus + 1
            end_bus = 0xFF
        if buses * ECAM_BUS_SIZE > OFF_MAX - address:
            return None
        length = buses * ECAM_BUS_SIZE
    else:
        if entry[end] != "+" or not _is_hex(entry, end + 1):
            return None
        length, end = _strtol(entry, end + 1)
        if end != len(entry) or length & 3 or length > OFF_MAX or length > 256 * ECAM_BUS_SIZE:
            return None
        if length > OFF_MAX - address:
            return None
        if buses > 0 and length > buses * ECAM_BUS_SIZE:
            return None
        if buses <= 0:
            if length > (0xFF - start_bus + 1) * ECAM_BUS_SIZE:
                return None
            end_bus = (start_bus + (length + ECAM_BUS_SIZE - 1) // ECAM_BUS_SIZE) & 0xFF

    return EcamRange(domain, start_bus, end_bus, address, length)


def parse_addrs(text: str) -> list[EcamRange]:
    """Parse a comma separated list of ECAM ranges; ValueError on bad syntax."""
    if not text:
        return []
    ranges = []
    for entry in text.split(","):
        parsed = _parse_entry(entry)
        if parsed is None:
            raise ValueError(f"Invalid ECAM address range: {entry!r}")
        ranges.append(parsed)
    return ranges


def validate_addrs(text: str) -> bool:
    try:
        parse_addrs(text)
    except ValueError:
        return False
    return True


def get_bus_addr(ranges, domain: int, bus: int) -> Optional[tuple[int, int]]:
    """Return (address, remaining length) of a bus's window, or None."""
    for rng in ranges:
        if rng.domain == domain and rng.start_bus <= bus <= rng.end_bus:
            offset = ECAM_BUS_SIZE * (bus - rng.start_bus)
            if offset >= rng.length:
                return None
            return rng.address + offset, rng.length - offset
    return None


@dataclass
class _Mapping:
    mm: mmap.mmap
    addr: int
    length: int
    domain: int
    bus: int
    write: bool


@dataclass
class _EcamState:
    ranges: list
    mapping: Optional[_Mapping] = None
    last_error: str = ""


def _first_glob(pattern: str) -> str:
    return (sorted(glob.glob(pattern)) or [pattern])[0]


class EcamMethods(PciMethods):
    """Raw access to configuration space through physical memory."""

    name = "ecam"
    help = "Raw memory mapped access using PCIe ECAM interface"

    def config(self, access) -> None:
        access.define_param("devmem.path", PATH_DEVMEM_DEVICE, "Path to the /dev/mem device")
        access.define_param("ecam.acpimcfg", PATH_ACPI_MCFG, "Path to the ACPI MCFG table")
        access.define_param("ecam.efisystab", PATH_EFI_SYSTAB, "Path to the EFI system table")
        # Format: [domain:]start_bus[-end_bus]:start_addr[+length],...
        access.define_param("ecam.addrs", "", "Physical addresses of memory mapped PCIe ECAM interface")

    def detect(self, access) -> bool:
        devmem = access.get_param("devmem.path") or ""
        acpimcfg = access.get_param("ecam.acpimcfg") or ""
        efisystab = access.get_param("ecam.efisystab") or ""
        addrs = access.get_param("ecam.addrs") or ""

        use_addrs = bool(addrs)
        if not use_addrs:
            access.debug("ecam.addrs was not specified...")

        use_acpimcfg = bool(acpimcfg)
        if use_acpimcfg:
            path = _first_glob(acpimcfg)
            if not os.access(path, os.R_OK):
                access.debug(f"cannot access acpimcfg: {path}...")
                use_acpimcfg = False

        use_efisystab = True
        if not efisystab or not os.access(efisystab, os.R_OK):
            if efisystab:
                access.debug(f"cannot access efisystab: {efisystab}...")
            use_efisystab = False

        if not (use_addrs or use_acpimcfg or use_efisystab):
            access.debug("no ecam source provided")
            return False

        if not validate_addrs(addrs):
            access.debug(f"ecam.addrs has invalid format {addrs}")
            return False

        if not devmem or not os.access(devmem, os.R_OK):
            access.debug(f"cannot access physical memory via {devmem}")
            return False

        if use_addrs:
            access.debug(f"using {devmem} with ecam addresses {addrs}")
        else:
            sources = ""
            if use_acpimcfg:
                sources += f" acpimcfg={acpimcfg}"
            if use_efisystab:
                sources += f" efisystab={efisystab}"
            access.debug(f"using {devmem} with{sources}")
        return True

    def init(self, access) -> None:
        devmem = access.get_param("devmem.path") or ""
        acpimcfg = access.get_param("ecam.acpimcfg") or ""
        efisystab = access.get_param("ecam.efisystab") or ""
        addrs = access.get_param("ecam.addrs") or ""

        if not validate_addrs(addrs):
            access.error(f'Option ecam.addrs has invalid address format "{addrs}".')

        flags = (os.O_RDWR if access.writeable else os.O_RDONLY) | getattr(os, "O_DSYNC", 0)
        try:
            access.fd = os.open(devmem, flags)
        except OSError as exc:
            access.error(f"Cannot open {devmem}: {exc.strerror}.")

        if addrs:
            ranges = parse_addrs(addrs)
        else:
            with os.fdopen(os.dup(access.fd), "rb", buffering=0) as mem:
                mcfg = find_mcfg(mem, acpimcfg, efisystab)
            if mcfg is None:
                access.error("Option ecam.addrs was not specified and ACPI MCFG table cannot be found.")
            ranges = [
                EcamRange(a.pci_segment, a.start_bus, a.end_bus, a.address, a.length)
                for a in mcfg.allocations
            ]

        state = _EcamState(ranges)
        access.aux = state
        test_domain, test_bus = (ranges[0].domain, ranges[0].start_bus) if ranges else (0, 0)
        if self._map_reg(access, False, test_domain, test_bus, 0, 0, 0) is None:
            access.error(f"Cannot map ecam region: {state.last_error or 'Unknown error'}.")

    def cleanup(self, access) -> None:
        if access.fd < 0:
            return
        state = access.aux
        if isinstance(state, _EcamState) and state.mapping is not None:
            state.mapping.mm.close()
            state.mapping = None
        access.aux = None
        os.close(access.fd)
        access.fd = -1

    def scan(self, access) -> None:
        state: _EcamState = access.aux
        domains = sorted({r.domain for r in state.ranges if r.domain < _MAX_SEGMENTS})
        for domain in domains:
            scan_domain(access, domain)

    def fill_info(self, dev: PciDev, flags: int) -> None:
        generic_fill_info(dev, flags)

    @staticmethod
    def _map_reg(access, write: bool, domain: int, bus: int, dev: int, func: int, pos: int):
        state: _EcamState = access.aux
        mapping = state.mapping
        if mapping is None or (mapping.domain, mapping.bus, mapping.write) != (domain, bus, write):
            found = get_bus_addr(state.ranges, domain, bus)
            if found is None:
                return None
            addr, length = found
            page_off = addr % _PAGE
            try:
                mm = mmap.mmap(
                    access.fd,
                    length + page_off,
                    access=mmap.ACCESS_WRITE if write else mmap.ACCESS_READ,
                    offset=addr - page_off,
                )
            except (OSError, ValueError, OverflowError) as exc:
                state.last_error = str(exc)
                return None
            if mapping is not None:
                mapping.mm.close()
            mapping = state.mapping = _Mapping(mm, addr, length, domain, bus, write)

        # ECAM offset: PCI Express Base Specification 5.0, section 7.2.2
        offset = ((dev & 0x1F) << 15) | ((func & 0x7) << 12) | (pos & 0xFFF)
        if offset + 4 > mapping.length:
            return None
        return mapping.mm, (mapping.addr % _PAGE) + offset

    def read(self, dev: PciDev, pos: int, length: int) -> Optional[bytes]:
        if pos >= _CONFIG_SPACE_SIZE:
            return None
        if length not in _WIDTHS:
            return block_read(dev, pos, length)
        found = self._map_reg(dev.access, False, dev.domain, dev.bus, dev.dev, dev.func, pos)
        if found is None:
            return None
        mm, off = found
        with memoryview(mm) as view, view[off:off + length] as part, part.cast(_WIDTHS[length]) as reg:
            value = reg[0]
        return value.to_bytes(length, sys.byteorder)

    def write(self, dev: PciDev, pos: int, data: bytes) -> bool:
        if pos >= _CONFIG_SPACE_SIZE:
            return False
        data = bytes(data)
        length = len(data)
        if length not in _WIDTHS:
            return block_write(dev, pos, data)
        found = self._map_reg(dev.access, True, dev.domain, dev.bus, dev.dev, dev.func, pos)
        if found is None:
            return False
        mm, off = found
        with memoryview(mm) as view, view[off:off + length] as part, part.cast(_WIDTHS[length]) as reg:
            reg[0] = int.from_bytes(data, sys.byteorder)
        return True