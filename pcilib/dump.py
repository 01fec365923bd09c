"""Access method that serves configuration space from a textual register dump."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from .device import PciDev, PciMethods
from .generic import generic_fill_info

_HEX = "0-9a-fA-F"
_DEVICE_LINES = (
    re.compile(rf"([{_HEX}]{{2}}):([{_HEX}]{{2}})\.([0-9]) "),
    re.compile(rf"([{_HEX}]{{4}}):([{_HEX}]{{2}}):([{_HEX}]{{2}})\.([0-9]) "),
    re.compile(rf"([{_HEX}]{{5}}):([{_HEX}]{{2}}):([{_HEX}]{{2}})\.([0-9]) "),
)
_REGISTER_LINE = re.compile(rf"([{_HEX}]{{2,8}}): ")
_HEX_DIGITS = frozenset("0123456789abcdefABCDEF")

_SMALL_SPACE = 256
_FULL_SPACE = 4096
_MAX_LINE = 253


@dataclass
class _DumpData:
    """Configuration bytes of one dumped device and how many are known."""

    data: bytearray
    length: int = 0


def _new_data(size: int) -> _DumpData:
    return _DumpData(bytearray(b"\xff" * size))


def _parse_device_line(line: str) -> Optional[tuple[int, int, int, int]]:
    for pattern in _DEVICE_LINES:
        match = pattern.match(line)
        if match is None:
            continue
        groups = match.groups()
        if len(groups) == 3:
            bus, slot, func = groups
            domain = "0"
        else:
            domain, bus, slot, func = groups
        return int(domain, 16), int(bus, 16), int(slot, 16), int(func)
    return None


class DumpMethods(PciMethods):
    """Reads devices and their registers from a file written by a lister."""

    name = "dump"
    help = "Reading of register dumps (set the `dump.name' parameter)"

    def config(self, access) -> None:
        access.define_param("dump.name", "", "Name of the bus dump file to read from")

    def detect(self, access) -> bool:
        return bool(access.get_param("dump.name"))

    def init(self, access) -> None:
        name = access.get_param("dump.name")
        if name is None:
            access.error("dump: File name not given.")
        try:
            with open(name, "rb") as f:
                content = f.read().decode("latin-1")
        except OSError as exc:
            access.error(f"dump: Cannot open {name}: {exc.strerror}")

        pieces = content.split("\n")
        dev: Optional[PciDev] = None
        for index, line in enumerate(pieces):
            last = index == len(pieces) - 1
            if last and not line:
                break
            if last or len(line) > _MAX_LINE:
                access.error("dump: line too long or unterminated")
            if line.endswith("\r"):
                line = line[:-1]
            dev = self._parse_line(access, dev, line)

    def _parse_line(self, access, dev: Optional[PciDev], line: str) -> Optional[PciDev]:
        address = _parse_device_line(line)
        if address is not None:
            new_dev = access.get_dev(*address)
            new_dev.aux = _new_data(_SMALL_SPACE)
            access.link_dev(new_dev)
            return new_dev
        if not line:
            return None
        if dev is None:
            return dev
        match = _REGISTER_LINE.match(line)
        if match is None:
            return dev
        self._parse_registers(access, dev, int(match.group(1), 16), line[line.index(" ") + 1:])
        return dev

    @staticmethod
    def _parse_registers(access, dev: PciDev, pos: int, rest: str) -> None:
        dd: _DumpData = dev.aux
        k = 0
        while (
            k + 1 < len(rest)
            and rest[k] in _HEX_DIGITS
            and rest[k + 1] in _HEX_DIGITS
            and (k + 2 == len(rest) or rest[k + 2] == " ")
        ):
            if pos >= _FULL_SPACE:
                access.error("dump: At most 4096 bytes of config space are supported")
            if pos >= len(dd.data):
                grown = _new_data(_FULL_SPACE)
                grown.data[:_SMALL_SPACE] = dd.data[:_SMALL_SPACE]
                grown.length = dd.length
                dev.aux = dd = grown
            dd.data[pos] = int(rest[k:k + 2], 16)
            pos += 1
            dd.length = max(dd.length, pos)
            k += 2
            if k < len(rest):
                k += 1
        if k < len(rest):
            access.error("dump: Malformed line")

    def scan(self, access) -> None:
        """Devices were already linked while reading the dump."""

    def fill_info(self, dev: PciDev, flags: int) -> None:
        generic_fill_info(dev, flags)

    def read(self, dev: PciDev, pos: int, length: int) -> Optional[bytes]:
        dd: Optional[_DumpData] = dev.aux
        if dd is None:
            source = next(
                (
                    e
                    for e in dev.access.devices
                    if (e.domain, e.bus, e.dev, e.func) == (dev.domain, dev.bus, dev.dev, dev.func)
                ),
                None,
            )
            if source is None or source.aux is None:
                return None
            dd = source.aux
        if pos + length > dd.length:
            return None
        return bytes(dd.data[pos:pos + length])

    def write(self, dev: PciDev, pos: int, data: bytes) -> bool:
        dev.access.error("Writing to dump files is not supported.")
        return False

    def cleanup_dev(self, dev: PciDev) -> None:
        dev.aux = None