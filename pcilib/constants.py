"""Access methods, fill flags, lookup modes and configuration-space registers."""

from enum import IntEnum, IntFlag

LIB_VERSION = 0x030A00


class AccessType(IntEnum):
    """Known configuration space access methods."""

    AUTO = 0
    SYS_BUS_PCI = 1
    PROC_BUS_PCI = 2
    I386_TYPE1 = 3
    I386_TYPE2 = 4
    FBSD_DEVICE = 5
    AIX_DEVICE = 6
    NBSD_LIBPCI = 7
    OBSD_DEVICE = 8
    DUMP = 9
    DARWIN = 10
    SYLIXOS_DEVICE = 11
    HURD = 12
    WIN32_CFGMGR32 = 13
    WIN32_KLDBG = 14
    WIN32_SYSDBG = 15
    MMIO_TYPE1 = 16
    MMIO_TYPE1_EXT = 17
    ECAM = 18


ACCESS_MAX = len(AccessType)


class Fill(IntFlag):
    """Groups of device properties that fill_info() can obtain."""

    IDENT = 0x0001
    IRQ = 0x0002
    BASES = 0x0004
    ROM_BASE = 0x0008
    SIZES = 0x0010
    CLASS = 0x0020
    CAPS = 0x0040
    EXT_CAPS = 0x0080
    PHYS_SLOT = 0x0100
    MODULE_ALIAS = 0x0200
    LABEL = 0x0400
    NUMA_NODE = 0x0800
    IO_FLAGS = 0x1000
    DT_NODE = 0x2000
    IOMMU_GROUP = 0x4000
    BRIDGE_BASES = 0x8000
    RESCAN = 0x00010000
    CLASS_EXT = 0x00020000
    SUBSYS = 0x00040000
    PARENT = 0x00080000
    DRIVER = 0x00100000


class LookupMode(IntFlag):
    """Flags controlling translation of IDs to names."""

    VENDOR = 1
    DEVICE = 2
    CLASS = 4
    SUBSYSTEM = 8
    PROGIF = 16
    NUMERIC = 0x10000
    NO_NUMBERS = 0x20000
    MIXED = 0x40000
    NETWORK = 0x80000
    SKIP_LOCAL = 0x100000
    CACHE = 0x200000
    REFRESH_CACHE = 0x400000
    NO_HWDB = 0x800000


class CapType(IntEnum):
    """Kinds of capability lists."""

    NORMAL = 1
    EXTENDED = 2


ADDR_IO_MASK = ~0x3 & 0xFFFFFFFFFFFFFFFF
ADDR_MEM_MASK = ~0xF & 0xFFFFFFFFFFFFFFFF
ADDR_FLAG_MASK = 0xF

# Standard configuration-space header registers.
VENDOR_ID = 0x00
DEVICE_ID = 0x02
COMMAND = 0x04
STATUS = 0x06
REVISION_ID = 0x08
CLASS_PROG = 0x09
CLASS_DEVICE = 0x0A
HEADER_TYPE = 0x0E
BASE_ADDRESS_0 = 0x10
CAPABILITY_LIST = 0x34
INTERRUPT_LINE = 0x3C
INTERRUPT_PIN = 0x3D

STATUS_CAP_LIST = 0x10

# Capability list entries.
CAP_LIST_ID = 0
CAP_LIST_NEXT = 1
CAP_ID_EXP = 0x10