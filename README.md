# pcilib

`pcilib` reads and writes PCI configuration space. It scans buses, finds
each device's identity, resources and capabilities, filters devices by slot
or ID, and lists what it finds. It has no dependencies outside the standard
library.

## Access methods

Two access methods are built in (see `pcilib.backends.default_methods`):

- **dump** (`pcilib.dump.DumpMethods`) reads a text register dump of the
  kind a PCI lister writes with hex dumps turned on. Set the `dump.name`
  parameter to the dump file. The dump is read-only, and a write raises
  `PciError`. A dump may hold up to 4096 bytes of config space per device.
- **ecam** (`pcilib.ecam.EcamMethods`) maps PCIe ECAM windows of physical
  memory through `/dev/mem` (parameter `devmem.path`). The windows come from
  the `ecam.addrs` parameter, which has the form
  `[domain:]start_bus[-end_bus]:start_addr[+length],...`. If that parameter
  is empty, they come from the ACPI MCFG table. The table is read from
  `ecam.acpimcfg` (a glob, by default `/sys/firmware/acpi/tables/MCFG*`) or
  found through the RSDP address in `ecam.efisystab` (by default
  `/sys/firmware/efi/systab`). This method normally needs root.

When the method is left at `AccessType.AUTO`, `PciAccess.init()` probes the
available methods in a fixed order. In this package only **ecam** takes part
in that probing. To read a dump, select the dump method yourself, either with
`-F` on the command line or by setting `access.method = AccessType.DUMP`.

## Installation

```
pip install .
```

## Command line

List the devices in a register dump:

```
pcilib -F dump.txt
```

Each device is printed on one line. The line gives the domain:bus:slot.func
address, the vendor, device and class IDs, the IRQ, the interrupt pin and the
first base address.

| Option | Meaning |
| --- | --- |
| `-A <method>` | Use the named access method. `-A help` lists the methods. |
| `-O <name>=<value>` | Set an access parameter. `-O help` lists the parameters with their help text and current value. |
| `-F <file>` | Read a register dump. Same as `-A dump -O dump.name=<file>`. |
| `-G` | Turn on debugging messages. |

Extra positional arguments, unknown options and library errors are reported on
standard error, and the command exits with status 1.

Using ECAM with the ranges given by hand:

```
pcilib -A ecam -O ecam.addrs=0:0-ff:e0000000
```

## Library

```python
from pcilib.backends import new_access
from pcilib.constants import AccessType, Fill
from pcilib.filter import PciFilter

with new_access() as acc:
    acc.method = AccessType.DUMP
    acc.set_param("dump.name", "dump.txt")
    acc.init()
    acc.scan_bus()

    flt = PciFilter()
    flt.parse_id("8086:")
    for dev in acc.devices:
        if flt.match(dev):
            dev.fill_info(Fill.IDENT | Fill.CLASS | Fill.CAPS)
            print(hex(dev.vendor_id), hex(dev.device_id), hex(dev.device_class))
```

- `PciAccess` (in `pcilib.access`) holds the options, the named parameters
  (`define_param`, `get_param`, `set_param`, `walk_params`) and the list of
  devices. It also picks the access method (`init`) and creates devices
  (`get_dev`, `scan_bus`). Fatal errors raise `pcilib.device.PciError`. Used
  as a context manager, it calls `cleanup()` on exit.
- `PciDev` (in `pcilib.device`) reads and writes config space with
  `read_byte`, `read_word`, `read_long` and `read_block`, and with the
  matching `write_*` methods. Multi-byte values are little-endian. When the
  back-end cannot read a register, `read_byte`, `read_word` and `read_long`
  return all bits set, and `read_block` returns `None`. `fill_info` obtains
  groups of properties, which are selected with `Fill` flags.
  `find_cap` and `find_cap_nr` search the normal and extended capability
  lists.
- `PciFilter` (in `pcilib.filter`) has two parsers.
  `parse_slot` takes `[[[domain]:][bus]:][slot][.[func]]`, and `parse_id`
  takes `[vendor]:[device][:class[:progif]]`. In the class field, `x` stands
  for a hex digit that is not compared. Both parsers raise `FilterError` on
  bad input. `match` tells whether a device meets every criterion.
- `pcilib.generic` provides bus scanning (`scan_bus`, `scan_domain`,
  `generic_scan`) and `generic_fill_info`, both built on plain register reads.
  It also has `block_read` and `block_write`, which split a range into
  aligned 1, 2 and 4 byte accesses.
- `pcilib.emulated.emulated_read` builds the first 64 bytes of a config header
  from the fields a device already has. It handles normal headers, PCI bridge
  headers and CardBus headers.
- `pcilib.acpi` reads and checks ACPI tables: `calculate_checksum`,
  `parse_rsdp`, `read_sdt`, `Mcfg.parse`, `find_rsdp_address` and
  `find_mcfg`.
- `pcilib.ecam` parses ECAM address lists with `parse_addrs`,
  `validate_addrs` and `get_bus_addr`.

New access methods subclass `pcilib.device.PciMethods` and are passed to
`PciAccess` as a mapping from `AccessType` to back-end.

## What this package does not do

- Config space is reached only through register dumps and ECAM. There is no
  access through the operating system's own PCI interfaces, I/O ports or
  vendor drivers, so on most machines a live system is reached only as root
  through `/dev/mem`.
- IDs are not translated to vendor, device or class names. The `LookupMode`
  flags are defined, but there is no ID database and no name lookup.
- The only command is a simple lister. There is no detailed decoder of
  registers or capabilities, and there is no tool for changing registers from
  the command line.
- The RSDP is found only through the EFI system table file. There is no BIOS
  memory scan and no BSD kernel query.