"""PCI devices: configuration space access, properties and capabilities."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from .constants import (
    CAP_ID_EXP,
    CAP_LIST_ID,
    CAP_LIST_NEXT,
    CAPABILITY_LIST,
    STATUS,
    STATUS_CAP_LIST,
    CapType,
    Fill,
)


class PciError(Exception):
    """Raised when the library meets a fatal condition."""


class PciMethods:
    """Base class of access back-ends; subclasses override what they support."""

    name = ""
    help = ""

    def config(self, access) -> None:
        """Define back-end specific parameters."""

    def detect(self, access) -> bool:
        """Tell whether the back-end can be used."""
        return False

    def init(self, access) -> None:
        """Prepare the back-end for use."""

    def cleanup(self, access) -> None:
        """Release resources held by the back-end."""

    def scan(self, access) -> None:
        """Find devices and link them to the access object."""

    def fill_info(self, dev: "PciDev", flags: int) -> None:
        """Obtain the requested device properties."""
        dev.scan_caps(flags)

    def read(self, dev: "PciDev", pos: int, length: int) -> Optional[bytes]:
        """Read configuration space; None when it cannot be read."""
        return None

    def write(self, dev: "PciDev", pos: int, data: bytes) -> bool:
        """Write configuration space; False when it cannot be written."""
        return False

    def read_vpd(self, dev: "PciDev", pos: int, length: int) -> Optional[bytes]:
        """Read vital product data; None when unavailable."""
        return None

    def init_dev(self, dev: "PciDev") -> None:
        """Attach back-end data to a new device."""

    def cleanup_dev(self, dev: "PciDev") -> None:
        """Release back-end data of a device."""


@dataclass
class PciCap:
    """One entry of a capability list."""

    id: int
    type: int
    addr: int


class PciDev:
    """A single PCI function reachable through an access object."""

    def __init__(self, access, domain: int = 0, bus: int = 0, dev: int = 0, func: int = 0):
        self.access = access
        self.methods: PciMethods = access.methods
        self.domain = domain
        self.bus = bus
        self.dev = dev
        self.func = func

        self.known_fields = 0
        self.vendor_id = 0
        self.device_id = 0
        self.device_class = 0
        self.irq = 0
        self.base_addr = [0] * 6
        self.size = [0] * 6
        self.rom_base_addr = 0
        self.rom_size = 0
        self.phy_slot: Optional[str] = None
        self.module_alias: Optional[str] = None
        self.label: Optional[str] = None
        self.numa_node = -1
        self.flags = [0] * 6
        self.rom_flags = 0
        self.bridge_base_addr = [0] * 4
        self.bridge_size = [0] * 4
        self.bridge_flags = [0] * 4
        self.prog_if = 0
        self.rev_id = 0
        self.subsys_vendor_id = 0
        self.subsys_id = 0
        self.parent: Optional[PciDev] = None
        self.no_config_access = False

        self.cache: Optional[bytearray] = None
        self.hdrtype = -1
        self.aux: Any = None
        self.properties: dict[int, str] = {}
        self.caps: list[PciCap] = []

        if self.methods is not None:
            self.methods.init_dev(self)

    def __repr__(self) -> str:
        return f"PciDev({self.domain:04x}:{self.bus:02x}:{self.dev:02x}.{self.func})"

    @property
    def domain_16(self) -> int:
        """Domain number clipped to 16 bits (0xffff if it does not fit)."""
        return 0xFFFF if self.domain > 0xFFFF else self.domain

    @property
    def cache_len(self) -> int:
        return len(self.cache) if self.cache is not None else 0

    # Configuration space access

    def _read_data(self, pos: int, length: int) -> bytes:
        if pos & (length - 1):
            self.access.error(f"Unaligned read: pos={pos:02x}, len={length}")
        if pos + length <= self.cache_len:
            return bytes(self.cache[pos:pos + length])
        data = self.methods.read(self, pos, length)
        if not data:
            return b"\xff" * length
        return bytes(data)

    def read_byte(self, pos: int) -> int:
        return self._read_data(pos, 1)[0]

    def read_word(self, pos: int) -> int:
        return int.from_bytes(self._read_data(pos, 2), "little")

    def read_long(self, pos: int) -> int:
        return int.from_bytes(self._read_data(pos, 4), "little")

    def read_block(self, pos: int, length: int) -> Optional[bytes]:
        """Read raw bytes from the back-end; None when the read fails."""
        data = self.methods.read(self, pos, length)
        return bytes(data) if data is not None else None

    def read_vpd(self, pos: int, length: int) -> Optional[bytes]:
        """Read vital product data; None when unavailable."""
        return self.methods.read_vpd(self, pos, length)

    def _write_data(self, pos: int, data: bytes) -> bool:
        length = len(data)
        if pos & (length - 1):
            self.access.error(f"Unaligned write: pos={pos:02x},len={length}")
        if pos + length <= self.cache_len:
            self.cache[pos:pos + length] = data
        return bool(self.methods.write(self, pos, data))

    def write_byte(self, pos: int, value: int) -> bool:
        return self._write_data(pos, bytes([value & 0xFF]))

    def write_word(self, pos: int, value: int) -> bool:
        return self._write_data(pos, (value & 0xFFFF).to_bytes(2, "little"))

    def write_long(self, pos: int, value: int) -> bool:
        return self._write_data(pos, (value & 0xFFFFFFFF).to_bytes(4, "little"))

    def write_block(self, pos: int, data: bytes) -> bool:
        data = bytes(data)
        cache_len = self.cache_len
        if pos < cache_len:
            count = cache_len - pos if pos + len(data) >= cache_len else len(data)
            self.cache[pos:pos + count] = data[:count]
        return bool(self.methods.write(self, pos, data))

    def setup_cache(self, cache) -> None:
        """Serve reads of the first len(cache) bytes from the given buffer."""
        if cache is None:
            self.cache = None
        elif isinstance(cache, bytearray):
            self.cache = cache
        else:
            self.cache = bytearray(cache)

    # Known fields

    def want_fill(self, flags: int, mask: int) -> bool:
        """Mark the fields in mask as known; tell if any requested were missing."""
        wanted = int(flags) & int(mask)
        if self.known_fields & wanted == wanted:
            return False
        self.known_fields |= int(mask)
        return True

    def clear_fill(self, mask: int) -> None:
        self.known_fields &= ~int(mask)

    def _reset_properties(self) -> None:
        self.known_fields = 0
        self.phy_slot = None
        self.module_alias = None
        self.label = None
        self.free_caps()
        self.properties.clear()

    def fill_info(self, flags: int) -> int:
        """Obtain the requested properties and return the known-fields mask."""
        flags = int(flags)
        if flags & Fill.RESCAN:
            flags &= ~int(Fill.RESCAN)
            self._reset_properties()
        if flags & ~self.known_fields:
            self.methods.fill_info(self, flags)
        return self.known_fields

    # String properties

    def set_property(self, key: int, value: Optional[str]) -> Optional[str]:
        """Replace the property under key; None removes it."""
        self.properties.pop(key, None)
        if value is None:
            return None
        self.properties[key] = value
        return value

    def get_string_property(self, key: int) -> Optional[str]:
        return self.properties.get(key)

    # Capabilities

    def _add_cap(self, addr: int, cap_id: int, cap_type: int) -> None:
        self.caps.append(PciCap(cap_id, cap_type, addr))
        self.access.debug(
            f"{self.domain:04x}:{self.bus:02x}:{self.dev:02x}.{self.func}: "
            f"Found capability {cap_id:04x} of type {int(cap_type)} at {addr:04x}\n"
        )

    def _scan_trad_caps(self) -> None:
        if not self.read_word(STATUS) & STATUS_CAP_LIST:
            return
        seen = set()
        where = self.read_byte(CAPABILITY_LIST) & ~3
        while where:
            cap_id = self.read_byte(where + CAP_LIST_ID)
            nxt = self.read_byte(where + CAP_LIST_NEXT) & ~3
            if where in seen:
                break
            seen.add(where)
            if cap_id == 0xFF:
                break
            self._add_cap(where, cap_id, CapType.NORMAL)
            where = nxt

    def _scan_ext_caps(self) -> None:
        if self.find_cap(CAP_ID_EXP, CapType.NORMAL) is None:
            return
        seen = set()
        where = 0x100
        while True:
            header = self.read_long(where)
            if not header or header == 0xFFFFFFFF:
                break
            if where in seen:
                break
            seen.add(where)
            self._add_cap(where, header & 0xFFFF, CapType.EXTENDED)
            where = (header >> 20) & ~3
            if not where:
                break

    def scan_caps(self, want_fields: int) -> None:
        want_fields = int(want_fields)
        if want_fields & Fill.EXT_CAPS:
            want_fields |= int(Fill.CAPS)
        if self.want_fill(want_fields, Fill.CAPS):
            self._scan_trad_caps()
        if self.want_fill(want_fields, Fill.EXT_CAPS):
            self._scan_ext_caps()

    def free_caps(self) -> None:
        self.caps.clear()

    def find_cap(self, cap_id: int, cap_type: int) -> Optional[PciCap]:
        return self.find_cap_nr(cap_id, cap_type)[0]

    def find_cap_nr(self, cap_id: int, cap_type: int, number: int = 0) -> tuple[Optional[PciCap], int]:
        """Return the number-th matching capability and the count of matches."""
        self.fill_info(Fill.CAPS if cap_type == CapType.NORMAL else Fill.EXT_CAPS)
        matches = [c for c in self.caps if c.type == cap_type and c.id == cap_id]
        found = matches[number] if 0 <= number < len(matches) else None
        return found, len(matches)

    def close(self) -> None:
        """Release everything held for this device."""
        if self.methods is not None:
            self.methods.cleanup_dev(self)
        self.free_caps()
        self.properties.clear()