"""Configuration space synthesised from already known device properties."""

from __future__ import annotations

from typing import Optional

from .generic import (
    HEADER_TYPE_BRIDGE,
    HEADER_TYPE_CARDBUS,
    HEADER_TYPE_NORMAL,
    block_read,
)

_U32 = 0xFFFFFFFF
_U64 = 0xFFFFFFFFFFFFFFFF

# Resource flags reported by the operating system.
IORESOURCE_TYPE_BITS = 0x00001F00
IORESOURCE_IO = 0x00000100
IORESOURCE_MEM = 0x00000200
IORESOURCE_PREFETCH = 0x00002000
IORESOURCE_MEM_64 = 0x00100000
IORESOURCE_IO_16BIT_ADDR = 1 << 17

# Base address register bits.
BASE_ADDRESS_SPACE = 0x01
BASE_ADDRESS_SPACE_IO = 0x01
BASE_ADDRESS_SPACE_MEMORY = 0x00
BASE_ADDRESS_MEM_TYPE_32 = 0x00
BASE_ADDRESS_MEM_TYPE_64 = 0x04
BASE_ADDRESS_MEM_PREFETCH = 0x08
BASE_ADDRESS_MEM_MASK = ~0x0F & _U32
BASE_ADDRESS_IO_MASK = ~0x03 & _U32

CLASS_BRIDGE_PCI = 0x0604
CLASS_BRIDGE_CARDBUS = 0x0607

# Header registers (dword aligned).
VENDOR_ID = 0x00
COMMAND = 0x04
CLASS_REVISION = 0x08
CACHE_LINE_SIZE = 0x0C
BASE_ADDRESS_0 = 0x10
BASE_ADDRESS_1 = 0x14
BASE_ADDRESS_2 = 0x18
BASE_ADDRESS_3 = 0x1C
BASE_ADDRESS_4 = 0x20
BASE_ADDRESS_5 = 0x24
SUBSYSTEM_VENDOR_ID = 0x2C
ROM_ADDRESS = 0x30
INTERRUPT_LINE = 0x3C

COMMAND_IO = 0x1
COMMAND_MEMORY = 0x2
ROM_ADDRESS_ENABLE = 0x01
ROM_ADDRESS_MASK = ~0x7FF & _U32

# PCI-to-PCI bridge registers.
PRIMARY_BUS = 0x18
IO_BASE = 0x1C
MEMORY_BASE = 0x20
PREF_MEMORY_BASE = 0x24
PREF_BASE_UPPER32 = 0x28
PREF_LIMIT_UPPER32 = 0x2C
IO_BASE_UPPER16 = 0x30
ROM_ADDRESS1 = 0x38

IO_RANGE_MASK = ~0x0F
IO_RANGE_TYPE_16 = 0x00
IO_RANGE_TYPE_32 = 0x01
MEMORY_RANGE_MASK = ~0x0F
PREF_RANGE_MASK = ~0x0F
PREF_RANGE_TYPE_32 = 0x00
PREF_RANGE_TYPE_64 = 0x01

# CardBus bridge registers.
CB_PRIMARY_BUS = 0x18
CB_MEMORY_BASE_0 = 0x1C
CB_MEMORY_LIMIT_0 = 0x20
CB_MEMORY_BASE_1 = 0x24
CB_MEMORY_LIMIT_1 = 0x28
CB_IO_BASE_0 = 0x2C
CB_IO_LIMIT_0 = 0x30
CB_IO_BASE_1 = 0x34
CB_IO_LIMIT_1 = 0x38
CB_IO_RANGE_MASK = ~0x03


def _ioflg_to_pciflg(ioflg: int) -> int:
    kind = ioflg & IORESOURCE_TYPE_BITS
    if kind == IORESOURCE_IO:
        return BASE_ADDRESS_SPACE_IO
    if kind == IORESOURCE_MEM:
        flg = BASE_ADDRESS_SPACE_MEMORY
        flg |= BASE_ADDRESS_MEM_TYPE_64 if ioflg & IORESOURCE_MEM_64 else BASE_ADDRESS_MEM_TYPE_32
        if ioflg & IORESOURCE_PREFETCH:
            flg |= BASE_ADDRESS_MEM_PREFETCH
        return flg
    return 0


def _baseres_to_pcires(addr: int, ioflg: int) -> tuple[int, Optional[int]]:
    """Return the BAR value and, for 64-bit memory, the upper half."""
    val = _ioflg_to_pciflg(ioflg)
    upper = None
    if (val & BASE_ADDRESS_SPACE) == BASE_ADDRESS_SPACE_IO and addr <= _U32:
        val |= addr & BASE_ADDRESS_IO_MASK
    elif (val & BASE_ADDRESS_SPACE) == BASE_ADDRESS_SPACE_MEMORY:
        val |= addr & BASE_ADDRESS_MEM_MASK
        if val & BASE_ADDRESS_MEM_TYPE_64:
            upper = (addr >> 32) & _U32
    return val & _U32, upper


def _even_bar(addr: int, ioflg: int) -> int:
    return _baseres_to_pcires(addr, ioflg)[0]


def _odd_bar(addr0: int, ioflg0: int, addr: int, ioflg: int) -> int:
    _, upper = _baseres_to_pcires(addr0, ioflg0)
    if upper is not None:
        return upper
    return _baseres_to_pcires(addr, ioflg)[0]


def _limit(dev, index: int) -> int:
    return (dev.bridge_base_addr[index] + dev.bridge_size[index] - 1) & _U64


def _rom_value(dev) -> int:
    val = dev.rom_base_addr & ROM_ADDRESS_MASK
    if val:
        val |= ROM_ADDRESS_ENABLE
    return val


def _cb_io_base(dev, index: int) -> int:
    if not dev.bridge_size[index]:
        return 0x0000FFFF & CB_IO_RANGE_MASK
    val = dev.bridge_base_addr[index] & CB_IO_RANGE_MASK
    if dev.bridge_flags[index] & IORESOURCE_IO_16BIT_ADDR or _limit(dev, index) <= 0xFFFF:
        return val | IO_RANGE_TYPE_16
    return val | IO_RANGE_TYPE_32


def _normal_register(dev, reg: int, val: int) -> int:
    if reg == BASE_ADDRESS_2:
        return _even_bar(dev.base_addr[2], dev.flags[2])
    if reg == BASE_ADDRESS_3:
        return _odd_bar(dev.base_addr[2], dev.flags[2], dev.base_addr[3], dev.flags[3])
    if reg == BASE_ADDRESS_4:
        return _even_bar(dev.base_addr[4], dev.flags[4])
    if reg == BASE_ADDRESS_5:
        return _odd_bar(dev.base_addr[4], dev.flags[4], dev.base_addr[5], dev.flags[5])
    if reg == SUBSYSTEM_VENDOR_ID:
        return (dev.subsys_id << 16) | dev.subsys_vendor_id
    if reg == ROM_ADDRESS:
        return _rom_value(dev)
    return val


def _bridge_register(dev, reg: int, val: int) -> int:
    base = dev.bridge_base_addr
    size = dev.bridge_size
    if reg == COMMAND:
        if size[0]:
            val |= COMMAND_IO
        if size[1] or size[2]:
            val |= COMMAND_MEMORY
        return val
    if reg == PRIMARY_BUS:
        return dev.bus
    if reg == IO_BASE:
        if not size[0]:
            return 0xFF & IO_RANGE_MASK
        val = ((((_limit(dev, 0) >> 8) & IO_RANGE_MASK) << 8) & 0xFF00) | (
            ((base[0] >> 8) & IO_RANGE_MASK) & 0x00FF
        )
        if dev.bridge_flags[0] & IORESOURCE_IO_16BIT_ADDR and _limit(dev, 0) <= 0xFFFF:
            return val | (IO_RANGE_TYPE_16 << 8) | IO_RANGE_TYPE_16
        return val | (IO_RANGE_TYPE_32 << 8) | IO_RANGE_TYPE_32
    if reg == MEMORY_BASE:
        if not size[1]:
            return 0xFFFF & MEMORY_RANGE_MASK
        return ((((_limit(dev, 1) >> 16) & MEMORY_RANGE_MASK) << 16) & 0xFFFF0000) | (
            ((base[1] >> 16) & MEMORY_RANGE_MASK) & 0x0000FFFF
        )
    if reg == PREF_MEMORY_BASE:
        if not size[2]:
            return 0xFFFF & PREF_RANGE_MASK
        val = ((((_limit(dev, 2) >> 16) & PREF_RANGE_MASK) << 16) & 0xFFFF0000) | (
            ((base[2] >> 16) & PREF_RANGE_MASK) & 0x0000FFFF
        )
        if dev.bridge_flags[2] & IORESOURCE_MEM_64 or _limit(dev, 2) > _U32:
            return val | (PREF_RANGE_TYPE_64 << 16) | PREF_RANGE_TYPE_64
        return val | (PREF_RANGE_TYPE_32 << 16) | PREF_RANGE_TYPE_32
    if reg == PREF_BASE_UPPER32:
        return base[2] >> 32 if size[2] else val
    if reg == PREF_LIMIT_UPPER32:
        return _limit(dev, 2) >> 32 if size[2] else val
    if reg == IO_BASE_UPPER16:
        if not size[0]:
            return val
        return (((_limit(dev, 0) >> 16) << 16) & 0xFFFF0000) | ((base[0] >> 16) & 0x0000FFFF)
    if reg == ROM_ADDRESS1:
        return _rom_value(dev)
    return val


def _cardbus_register(dev, reg: int, val: int) -> int:
    base = dev.bridge_base_addr
    size = dev.bridge_size
    if reg == COMMAND:
        if size[0] or size[1]:
            val |= COMMAND_MEMORY
        if size[2] or size[3]:
            val |= COMMAND_IO
        return val
    if reg == CB_PRIMARY_BUS:
        return dev.bus
    if reg == CB_MEMORY_BASE_0:
        return base[0] & ~0xFFF if size[0] else _U32 & ~0xFFF
    if reg == CB_MEMORY_LIMIT_0:
        return _limit(dev, 0) & ~0xFFF if size[0] else val
    if reg == CB_MEMORY_BASE_1:
        return base[1] & ~0xFFF if size[1] else _U32 & ~0xFFF
    if reg == CB_MEMORY_LIMIT_1:
        return _limit(dev, 1) & ~0xFFF if size[1] else val
    if reg == CB_IO_BASE_0:
        return _cb_io_base(dev, 2)
    if reg == CB_IO_LIMIT_0:
        return _limit(dev, 2) & CB_IO_RANGE_MASK if size[2] else val
    if reg == CB_IO_BASE_1:
        return _cb_io_base(dev, 3)
    if reg == CB_IO_LIMIT_1:
        return _limit(dev, 3) & CB_IO_RANGE_MASK if size[3] else val
    # Bridge control and subsystem IDs lie outside the emulated registers.
    return val


def emulated_read(dev, pos: int, length: int) -> Optional[bytes]:
    """Build the first 64 bytes of configuration space from device fields.

    Returns None for positions beyond the emulated header.
    """
    if pos >= 64:
        return None
    if length > 4:
        return block_read(dev, pos, length)

    if dev.device_class == CLASS_BRIDGE_PCI:
        ht = HEADER_TYPE_BRIDGE
    elif dev.device_class == CLASS_BRIDGE_CARDBUS:
        ht = HEADER_TYPE_CARDBUS
    else:
        ht = HEADER_TYPE_NORMAL

    reg = pos & ~3
    val = 0
    if reg == COMMAND:
        for size, flags in zip(dev.size, dev.flags):
            if not size:
                continue
            kind = flags & IORESOURCE_TYPE_BITS
            if kind == IORESOURCE_IO:
                val |= COMMAND_IO
            elif kind == IORESOURCE_MEM:
                val |= COMMAND_MEMORY
    elif reg == VENDOR_ID:
        val = (dev.device_id << 16) | dev.vendor_id
    elif reg == CLASS_REVISION:
        val = (dev.device_class << 16) | (dev.prog_if << 8) | dev.rev_id
    elif reg == CACHE_LINE_SIZE:
        val = ht << 16
    elif reg == BASE_ADDRESS_0:
        val = _even_bar(dev.base_addr[0], dev.flags[0])
    elif reg == INTERRUPT_LINE:
        val = dev.irq if 0 <= dev.irq <= 0xFF else 0

    if reg == BASE_ADDRESS_1 and ht in (HEADER_TYPE_NORMAL, HEADER_TYPE_BRIDGE):
        val = _odd_bar(dev.base_addr[0], dev.flags[0], dev.base_addr[1], dev.flags[1])

    if ht == HEADER_TYPE_NORMAL:
        val = _normal_register(dev, reg, val)
    elif ht == HEADER_TYPE_BRIDGE:
        val = _bridge_register(dev, reg, val)
    else:
        val = _cardbus_register(dev, reg, val)

    val &= _U32
    if length <= 2:
        val >>= 8 * (pos & 3)
    val &= (1 << (8 * length)) - 1
    return val.to_bytes(length, "little")