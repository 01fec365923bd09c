"""Locating and decoding the ACPI MCFG table that describes ECAM regions."""

from __future__ import annotations

import glob
import re
import struct
from dataclasses import dataclass, field
from typing import BinaryIO, Optional, Union

OFF_MAX = (1 << 63) - 1

SDT_HEADER_SIZE = 36
MCFG_HEADER_SIZE = 44
MCFG_ALLOCATION_SIZE = 16
RSDP_SIZE = 20
RSDP20_SIZE = 36
ECAM_BUS_SIZE = 32 * 8 * 4096

_HEX_NUMBER = re.compile(r"(0[xX])?[0-9a-fA-F]+")


def calculate_checksum(data: bytes) -> int:
    """Byte that would make the sum of data zero modulo 256."""
    return (-sum(data)) & 0xFF


@dataclass(frozen=True)
class McfgAllocation:
    """One ECAM window: a PCI segment and a range of buses."""

    address: int
    pci_segment: int
    start_bus: int
    end_bus: int

    @property
    def length(self) -> int:
        buses = self.end_bus - self.start_bus + 1
        return buses * ECAM_BUS_SIZE if buses > 0 else 0


@dataclass
class Mcfg:
    """Decoded MCFG table."""

    allocations: list[McfgAllocation] = field(default_factory=list)

    @classmethod
    def parse(cls, data: bytes) -> "Mcfg":
        """Decode an MCFG table; ValueError if it is not a valid one."""
        data = bytes(data)
        if len(data) < SDT_HEADER_SIZE:
            raise ValueError("MCFG table too short")
        if data[:4] != b"MCFG":
            raise ValueError("Not an MCFG table")
        (length,) = struct.unpack_from("<I", data, 4)
        if length < SDT_HEADER_SIZE or length > len(data):
            raise ValueError("Invalid MCFG table length")
        if calculate_checksum(data[:length]) != 0:
            raise ValueError("Invalid MCFG table checksum")
        count = max(0, (length - MCFG_HEADER_SIZE) // MCFG_ALLOCATION_SIZE)
        allocations = []
        for index in range(count):
            address, segment, start, end, _ = struct.unpack_from(
                "<QHBBI", data, MCFG_HEADER_SIZE + index * MCFG_ALLOCATION_SIZE
            )
            allocations.append(McfgAllocation(address, segment, start, end))
        return cls(allocations)


def _read_at(mem: BinaryIO, addr: int, size: int) -> Optional[bytes]:
    try:
        mem.seek(addr)
        chunk = mem.read(size)
    except (OSError, ValueError, OverflowError):
        return None
    if chunk is None or len(chunk) != size:
        return None
    return bytes(chunk)


def parse_rsdp(data: bytes) -> Optional[tuple[int, int]]:
    """Return (RSDT address, XSDT address or 0) from an RSDP, or None if invalid."""
    data = bytes(data)
    if len(data) < RSDP_SIZE or data[:8] != b"RSD PTR ":
        return None
    if calculate_checksum(data[:RSDP_SIZE]) != 0:
        return None
    revision = data[15]
    (rsdt_address,) = struct.unpack_from("<I", data, 16)
    xsdt_address = 0
    if revision != 0 and len(data) >= RSDP20_SIZE:
        length, xsdt = struct.unpack_from("<IQ", data, 20)
        if length == RSDP20_SIZE and calculate_checksum(data[:RSDP20_SIZE]) == 0:
            xsdt_address = xsdt
    return rsdt_address, xsdt_address


def _parse_systab_number(text: str) -> int:
    if not _HEX_NUMBER.fullmatch(text):
        return 0
    value = int(text, 16)
    return value if value <= OFF_MAX else 0


def find_rsdp_address(efisystab: str) -> int:
    """Read the RSDP address from an EFI system table file; 0 if not found."""
    if not efisystab:
        return 0
    acpi20 = 0
    acpi = 0
    try:
        with open(efisystab, "r", encoding="latin-1", newline="") as f:
            for line in f:
                line = line.rstrip("\n")
                if line.startswith("ACPI20="):
                    value = _parse_systab_number(line[7:])
                    if value:
                        acpi20 = value
                elif line.startswith("ACPI="):
                    value = _parse_systab_number(line[5:])
                    if value:
                        acpi = value
    except OSError:
        return 0
    return acpi20 or acpi


def read_sdt(mem: BinaryIO, addr: int, signature: Union[str, bytes]) -> Optional[bytes]:
    """Read a system description table at addr; None unless valid with that signature."""
    sig = signature.encode("ascii") if isinstance(signature, str) else bytes(signature)
    if addr < 0 or addr > OFF_MAX - SDT_HEADER_SIZE:
        return None
    header = _read_at(mem, addr, SDT_HEADER_SIZE)
    if header is None or header[:4] != sig:
        return None
    (length,) = struct.unpack_from("<I", header, 4)
    if length < SDT_HEADER_SIZE:
        return None
    table = _read_at(mem, addr, length)
    if table is None or calculate_checksum(table) != 0:
        return None
    return table


def _mcfg_from_file(acpimcfg: str) -> Optional[Mcfg]:
    path = (sorted(glob.glob(acpimcfg)) or [acpimcfg])[0]
    try:
        with open(path, "rb") as f:
            data = f.read()
    except OSError:
        return None
    if len(data) <= MCFG_HEADER_SIZE:
        return None
    try:
        return Mcfg.parse(data)
    except ValueError:
        return None


def _mcfg_via(mem: BinaryIO, table: bytes, entry_format: str) -> Optional[Mcfg]:
    size = struct.calcsize(entry_format)
    count = (len(table) - SDT_HEADER_SIZE) // size
    for index in range(count):
        (addr,) = struct.unpack_from(entry_format, table, SDT_HEADER_SIZE + index * size)
        sdt = read_sdt(mem, addr, "MCFG")
        if sdt is not None:
            try:
                return Mcfg.parse(sdt)
            except ValueError:
                return None
    return None


def find_mcfg(mem: BinaryIO, acpimcfg: str, efisystab: str) -> Optional[Mcfg]:
    """Find the MCFG table in a file or through the ACPI tables in physical memory."""
    if acpimcfg:
        mcfg = _mcfg_from_file(acpimcfg)
        if mcfg is not None:
            return mcfg

    rsdp_address = find_rsdp_address(efisystab)
    if not rsdp_address:
        return None
    rsdp = _read_at(mem, rsdp_address, RSDP20_SIZE)
    parsed = parse_rsdp(rsdp) if rsdp is not None else None
    if parsed is None:
        return None
    rsdt_address, xsdt_address = parsed

    if xsdt_address:
        xsdt = read_sdt(mem, xsdt_address, "XSDT")
        if xsdt is not None:
            mcfg = _mcfg_via(mem, xsdt, "<Q")
            if mcfg is not None:
                return mcfg

    rsdt = read_sdt(mem, rsdt_address, "RSDT")
    if rsdt is not None:
        mcfg = _mcfg_via(mem, rsdt, "<I")
        if mcfg is not None:
            return mcfg
    return None