"""Command line front end: generic library options and a simple device lister."""

from __future__ import annotations

import contextlib
import getopt
import sys
from typing import NoReturn, Optional

from .constants import ACCESS_MAX, INTERRUPT_PIN, AccessType, Fill
from .device import PciError

PROGRAM_NAME = "pcilib"
GENERIC_OPTIONS = "A:F:GO:"
GENERIC_HELP = (
    "Generic options:\n"
    "-A <method>\tUse the specified PCI access method (see `-A help' for a list)\n"
    "-O <par>=<val>\tSet PCI access parameter (see `-O help' for a list)\n"
    "-G\t\tEnable PCI access debugging\n"
    "-F <file>\tRead PCI configuration dump from a given file\n"
)


def _die(msg: str) -> NoReturn:
    sys.stderr.write(f"{PROGRAM_NAME}: {msg}\n")
    raise SystemExit(1)


def _set_method(access, arg: str) -> None:
    if arg == "help":
        print("Known PCI access methods:\n")
        for index in range(ACCESS_MAX):
            name = access.get_method_name(index)
            if name:
                print(name)
        raise SystemExit(0)
    method = access.lookup_method(arg)
    if method is None:
        _die(f"No such PCI access method: {arg} (see `-A help' for a list)")
    access.method = method


def _set_option(access, arg: str) -> None:
    if arg == "help":
        print("Known PCI access parameters:\n")
        for param in access.walk_params():
            print(f"{param.name:<20} {param.help} ({param.value})")
        raise SystemExit(0)
    name, sep, value = arg.partition("=")
    if not sep:
        _die(f"Invalid PCI access parameter syntax: {arg}")
    try:
        access.set_param(name, value)
    except KeyError:
        _die(f"Unrecognized PCI access parameter: {name} (see `-O help' for a list)")


def parse_generic_option(option: str, access, arg: Optional[str]) -> bool:
    """Handle one of the options common to all tools; False if it is not one."""
    option = option.lstrip("-")
    if option == "F":
        with contextlib.suppress(KeyError):
            access.set_param("dump.name", arg)
        access.method = AccessType.DUMP
    elif option == "A":
        _set_method(access, arg)
    elif option == "G":
        access.debugging += 1
    elif option == "O":
        _set_option(access, arg)
    else:
        return False
    return True


def list_devices(access) -> list[str]:
    """Scan the bus and describe every device found on one line each."""
    access.scan_bus()
    lines = []
    for dev in access.devices:
        dev.fill_info(int(Fill.IDENT | Fill.BASES | Fill.CLASS))
        pin = dev.read_byte(INTERRUPT_PIN)
        lines.append(
            f"{dev.domain:04x}:{dev.bus:02x}:{dev.dev:02x}.{dev.func} "
            f"vendor={dev.vendor_id:04x} device={dev.device_id:04x} "
            f"class={dev.device_class:04x} irq={dev.irq} (pin {pin}) "
            f"base0={dev.base_addr[0]:x}"
        )
    return lines


def main(argv: Optional[list[str]] = None) -> int:
    """List PCI devices using the generic options to pick the access method."""
    from .backends import new_access

    if argv is None:
        argv = sys.argv[1:]
    try:
        opts, rest = getopt.getopt(argv, GENERIC_OPTIONS)
    except getopt.GetoptError as exc:
        _die(f"{exc.msg}\n{GENERIC_HELP}")
    if rest:
        _die(f"Unexpected argument: {rest[0]}\n{GENERIC_HELP}")

    with new_access() as access:
        for option, arg in opts:
            parse_generic_option(option, access, arg)
        try:
            access.init()
            for line in list_devices(access):
                print(line)
        except PciError as exc:
            _die(str(exc))
    return 0


if __name__ == "__main__":
    sys.exit(main())