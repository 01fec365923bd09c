"""Selecting devices by slot address and by identifiers."""

from __future__ import annotations

import string
from dataclasses import dataclass
from typing import Optional

from .constants import Fill

_MAX_EXPRESSION = 64
_FULL_MASK = 0xFFFFFFFF


class FilterError(ValueError):
    """Raised when a filter expression cannot be parsed."""


def _split_fields(text: str, sep: str, count: int, limit_length: bool = True) -> list[Optional[str]]:
    if limit_length and len(text) >= _MAX_EXPRESSION:
        raise FilterError("Expression too long")
    parts: list[Optional[str]] = list(text.split(sep))
    if len(parts) > count:
        raise FilterError("Too many fields")
    return parts + [None] * (count - len(parts))


def _field_defined(field: Optional[str]) -> bool:
    return bool(field) and field != "*"


def _parse_hex_field(
    field: Optional[str], maximum: int, error: str, with_mask: bool = False
) -> Optional[tuple[int, int]]:
    """Parse a hex field; None if it is empty or a wildcard.

    With with_mask, 'x' stands for a digit that is not compared, and the
    returned mask has zero bits in its place.
    """
    if not _field_defined(field):
        return None
    text = field
    # Leading "0x" has always been tolerated in plain numeric fields.
    if not with_mask and text[:2] in ("0x", "0X"):
        text = text[2:]

    out = 0
    mask = _FULL_MASK
    bound = 0
    for char in text:
        if char in "xX" and with_mask:
            out <<= 4
            bound = (bound << 4) | 1
            mask = (mask << 4) & _FULL_MASK
        elif char in string.hexdigits:
            digit = int(char, 16)
            out = (out << 4) | digit
            bound = (bound << 4) | digit
            mask = ((mask << 4) | 0xF) & _FULL_MASK
        else:
            raise FilterError(error)
        if bound > maximum:
            raise FilterError(error)
    return out, mask


@dataclass
class PciFilter:
    """Criteria a device must meet; -1 in a field means any value."""

    domain: int = -1
    bus: int = -1
    slot: int = -1
    func: int = -1
    vendor: int = -1
    device: int = -1
    device_class: int = -1
    device_class_mask: int = _FULL_MASK
    prog_if: int = -1

    def parse_slot(self, text: str) -> None:
        """Parse "[[[domain]:][bus]:][slot][.[func]]" into the filter."""
        fields = _split_fields(text, ":", 3)
        i = 0
        if fields[2] is not None:
            parsed = _parse_hex_field(fields[0], 0x7FFFFFFF, "Invalid domain number")
            if parsed is not None:
                self.domain = parsed[0]
            i += 1

        if fields[i + 1] is not None:
            parsed = _parse_hex_field(fields[i], 0xFF, "Invalid bus number")
            if parsed is not None:
                self.bus = parsed[0]
            i += 1

        fdev = fields[i]
        if _field_defined(fdev):
            try:
                slot_field, func_field = _split_fields(fdev, ".", 2, limit_length=False)
            except FilterError:
                raise FilterError("Invalid slot/function number") from None
            parsed = _parse_hex_field(slot_field, 0x1F, "Invalid slot number")
            if parsed is not None:
                self.slot = parsed[0]
            parsed = _parse_hex_field(func_field, 7, "Invalid function number")
            if parsed is not None:
                self.func = parsed[0]

    def parse_id(self, text: str) -> None:
        """Parse "[vendor]:[device][:class[:progif]]" into the filter."""
        fields = _split_fields(text, ":", 4)
        if fields[1] is None:
            raise FilterError("At least two fields must be given")

        parsed = _parse_hex_field(fields[0], 0xFFFF, "Invalid vendor ID")
        if parsed is not None:
            self.vendor = parsed[0]
        parsed = _parse_hex_field(fields[1], 0xFFFF, "Invalid device ID")
        if parsed is not None:
            self.device = parsed[0]
        parsed = _parse_hex_field(fields[2], 0xFFFF, "Invalid class code", with_mask=True)
        if parsed is not None:
            self.device_class, self.device_class_mask = parsed
        parsed = _parse_hex_field(fields[3], 0xFF, "Invalid programming interface code")
        if parsed is not None:
            self.prog_if = parsed[0]

    def match(self, dev) -> bool:
        """Tell whether the device satisfies every criterion of the filter."""
        if (
            (self.domain >= 0 and self.domain != dev.domain)
            or (self.bus >= 0 and self.bus != dev.bus)
            or (self.slot >= 0 and self.slot != dev.dev)
            or (self.func >= 0 and self.func != dev.func)
        ):
            return False
        if self.device >= 0 or self.vendor >= 0:
            dev.fill_info(Fill.IDENT)
            if (self.device >= 0 and self.device != dev.device_id) or (
                self.vendor >= 0 and self.vendor != dev.vendor_id
            ):
                return False
        if self.device_class >= 0:
            dev.fill_info(Fill.CLASS)
            if (self.device_class ^ dev.device_class) & self.device_class_mask:
                return False
        if self.prog_if >= 0:
            dev.fill_info(Fill.CLASS_EXT)
            if self.prog_if != dev.prog_if:
                return False
        return True