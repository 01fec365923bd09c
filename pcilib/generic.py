"""Bus scanning and property filling built on plain configuration space reads."""

from __future__ import annotations

from typing import Iterator, Optional

from .constants import (
    BASE_ADDRESS_0,
    CLASS_DEVICE,
    CLASS_PROG,
    DEVICE_ID,
    HEADER_TYPE,
    INTERRUPT_LINE,
    REVISION_ID,
    VENDOR_ID,
    CapType,
    Fill,
)

HEADER_TYPE_NORMAL = 0
HEADER_TYPE_BRIDGE = 1
HEADER_TYPE_CARDBUS = 2

SECONDARY_BUS = 0x19
SUBSYSTEM_VENDOR_ID = 0x2C
SUBSYSTEM_ID = 0x2E
ROM_ADDRESS = 0x30
ROM_ADDRESS1 = 0x38
CB_SUBSYSTEM_VENDOR_ID = 0x40
CB_SUBSYSTEM_ID = 0x42

CAP_ID_SSVID = 0x0D
SSVID_VENDOR = 4
SSVID_DEVICE = 6

BASE_ADDRESS_SPACE = 0x01
BASE_ADDRESS_SPACE_IO = 0x01
BASE_ADDRESS_MEM_TYPE_MASK = 0x06
BASE_ADDRESS_MEM_TYPE_64 = 0x04


def scan_bus(access, busmap: set, domain: int, bus: int) -> None:
    """Probe every slot of a bus, following bridges to their secondary buses."""
    access.debug(f"Scanning bus {bus:02x} for devices...\n")
    if bus in busmap:
        access.warning(f"Bus {bus:02x} seen twice (firmware bug). Ignored.")
        return
    busmap.add(bus)
    probe = access.alloc_dev()
    probe.domain = domain
    probe.bus = bus
    for slot in range(32):
        probe.dev = slot
        multi = False
        for func in range(8):
            if func and not multi:
                break
            probe.func = func
            vd = probe.read_long(VENDOR_ID)
            if not vd or vd == 0xFFFFFFFF:
                continue
            ht = probe.read_byte(HEADER_TYPE)
            if not func:
                multi = bool(ht & 0x80)
            ht &= 0x7F
            d = access.alloc_dev()
            d.domain = probe.domain
            d.bus = probe.bus
            d.dev = probe.dev
            d.func = probe.func
            d.vendor_id = vd & 0xFFFF
            d.device_id = vd >> 16
            d.known_fields = int(Fill.IDENT)
            d.hdrtype = ht
            access.link_dev(d)
            if ht == HEADER_TYPE_NORMAL:
                pass
            elif ht in (HEADER_TYPE_BRIDGE, HEADER_TYPE_CARDBUS):
                scan_bus(access, busmap, domain, probe.read_byte(SECONDARY_BUS))
            else:
                access.debug(
                    f"Device {d.domain:04x}:{d.bus:02x}:{d.dev:02x}.{d.func} "
                    f"has unknown header type {ht:02x}.\n"
                )
    probe.close()


def scan_domain(access, domain: int) -> None:
    scan_bus(access, set(), domain, 0)


def generic_scan(access) -> None:
    scan_domain(access, 0)


def _hdr_type(dev) -> int:
    if dev.hdrtype < 0:
        dev.hdrtype = dev.read_byte(HEADER_TYPE) & 0x7F
    return dev.hdrtype


def _fill_bases(dev) -> None:
    dev.base_addr = [0] * 6
    count = {HEADER_TYPE_NORMAL: 6, HEADER_TYPE_BRIDGE: 2, HEADER_TYPE_CARDBUS: 1}.get(_hdr_type(dev), 0)
    i = 0
    while i < count:
        x = dev.read_long(BASE_ADDRESS_0 + i * 4)
        if x and x != 0xFFFFFFFF:
            if (x & BASE_ADDRESS_SPACE) == BASE_ADDRESS_SPACE_IO:
                dev.base_addr[i] = x
            elif (x & BASE_ADDRESS_MEM_TYPE_MASK) != BASE_ADDRESS_MEM_TYPE_64:
                dev.base_addr[i] = x
            elif i >= count - 1:
                dev.access.warning(
                    f"{dev.domain:04x}:{dev.bus:02x}:{dev.dev:02x}.{dev.func}: "
                    f"Invalid 64-bit address seen for BAR {i}."
                )
            else:
                i += 1
                y = dev.read_long(BASE_ADDRESS_0 + i * 4)
                dev.base_addr[i - 1] = x | (y << 32)
        i += 1


def generic_fill_info(dev, flags: int) -> None:
    """Fill the requested properties by reading the configuration header."""
    if dev.want_fill(flags, Fill.IDENT):
        dev.vendor_id = dev.read_word(VENDOR_ID)
        dev.device_id = dev.read_word(DEVICE_ID)

    if dev.want_fill(flags, Fill.CLASS):
        dev.device_class = dev.read_word(CLASS_DEVICE)

    if dev.want_fill(flags, Fill.CLASS_EXT):
        dev.prog_if = dev.read_byte(CLASS_PROG)
        dev.rev_id = dev.read_byte(REVISION_ID)

    if dev.want_fill(flags, Fill.SUBSYS):
        ht = _hdr_type(dev)
        if ht == HEADER_TYPE_NORMAL:
            dev.subsys_vendor_id = dev.read_word(SUBSYSTEM_VENDOR_ID)
            dev.subsys_id = dev.read_word(SUBSYSTEM_ID)
        elif ht == HEADER_TYPE_BRIDGE:
            cap = dev.find_cap(CAP_ID_SSVID, CapType.NORMAL)
            if cap is not None:
                dev.subsys_vendor_id = dev.read_word(cap.addr + SSVID_VENDOR)
                dev.subsys_id = dev.read_word(cap.addr + SSVID_DEVICE)
        elif ht == HEADER_TYPE_CARDBUS:
            dev.subsys_vendor_id = dev.read_word(CB_SUBSYSTEM_VENDOR_ID)
            dev.subsys_id = dev.read_word(CB_SUBSYSTEM_ID)
        else:
            dev.clear_fill(Fill.SUBSYS)

    if dev.want_fill(flags, Fill.IRQ):
        dev.irq = dev.read_byte(INTERRUPT_LINE)

    if dev.want_fill(flags, Fill.BASES):
        _fill_bases(dev)

    if dev.want_fill(flags, Fill.ROM_BASE):
        dev.rom_base_addr = 0
        reg = {HEADER_TYPE_NORMAL: ROM_ADDRESS, HEADER_TYPE_BRIDGE: ROM_ADDRESS1}.get(_hdr_type(dev))
        if reg is not None:
            value = dev.read_long(reg)
            if value != 0xFFFFFFFF:
                dev.rom_base_addr = value

    dev.scan_caps(flags)


def _chunks(pos: int, length: int) -> Iterator[tuple[int, int]]:
    """Split a range into naturally aligned 1, 2 and 4 byte accesses."""
    if pos & 1 and length >= 1:
        yield pos, 1
        pos += 1
        length -= 1
    if pos & 3 and length >= 2:
        yield pos, 2
        pos += 2
        length -= 2
    while length >= 4:
        yield pos, 4
        pos += 4
        length -= 4
    if length >= 2:
        yield pos, 2
        pos += 2
        length -= 2
    if length:
        yield pos, 1


def block_read(dev, pos: int, length: int) -> Optional[bytes]:
    """Read a range using aligned accesses of the back-end; None on failure."""
    backend = dev.access.methods
    parts = []
    for chunk_pos, size in _chunks(pos, length):
        data = backend.read(dev, chunk_pos, size)
        if not data:
            return None
        parts.append(bytes(data))
    return b"".join(parts)


def block_write(dev, pos: int, data: bytes) -> bool:
    """Write a range using aligned accesses of the back-end."""
    backend = dev.access.methods
    data = bytes(data)
    offset = 0
    for chunk_pos, size in _chunks(pos, len(data)):
        if not backend.write(dev, chunk_pos, data[offset:offset + size]):
            return False
        offset += size
    return True