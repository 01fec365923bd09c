import pytest

from pcilib.access import PciAccess
from pcilib.constants import Fill
from pcilib.device import PciMethods
from pcilib.filter import FilterError, PciFilter


def make_dev(domain=0, bus=0, slot=0, func=0, vendor=0x8086, device=0x1234,
             device_class=0x0300, prog_if=0):
    access = PciAccess({})
    access.methods = PciMethods()
    dev = access.get_dev(domain, bus, slot, func)
    dev.vendor_id = vendor
    dev.device_id = device
    dev.device_class = device_class
    dev.prog_if = prog_if
    dev.known_fields = int(Fill.IDENT | Fill.CLASS | Fill.CLASS_EXT)
    return dev


def test_defaults_match_any_device():
    f = PciFilter()
    assert (f.domain, f.bus, f.slot, f.func) == (-1, -1, -1, -1)
    assert f.device_class_mask == 0xFFFFFFFF
    assert f.match(make_dev(domain=5, bus=3, slot=7, func=2))


def test_parse_full_slot():
    f = PciFilter()
    f.parse_slot("1:2:3.4")
    assert (f.domain, f.bus, f.slot, f.func) == (1, 2, 3, 4)


def test_parse_bus_and_slot():
    f = PciFilter()
    f.parse_slot("02:1f.7")
    assert (f.domain, f.bus, f.slot, f.func) == (-1, 2, 0x1F, 7)


def test_parse_slot_only():
    f = PciFilter()
    f.parse_slot("3")
    assert (f.bus, f.slot, f.func) == (-1, 3, -1)


def test_parse_function_only():
    f = PciFilter()
    f.parse_slot(".5")
    assert (f.slot, f.func) == (-1, 5)


def test_wildcards_keep_defaults():
    f = PciFilter()
    f.parse_slot("*:*:*.*")
    assert (f.domain, f.bus, f.slot, f.func) == (-1, -1, -1, -1)


def test_hex_prefix_tolerated_in_slot():
    f = PciFilter()
    f.parse_slot("0x10:0:0")
    assert f.domain == 16


@pytest.mark.parametrize(
    "text,message",
    [
        ("100:0", "Invalid bus number"),
        ("0:20", "Invalid slot number"),
        ("1.8", "Invalid function number"),
        ("g:0", "Invalid bus number"),
        ("1:2:3:4", "Too many fields"),
        ("1.2.3", "Invalid slot/function number"),
        ("80000000:0:0", "Invalid domain number"),
        ("0" * 64, "Expression too long"),
    ],
)
def test_slot_errors(text, message):
    with pytest.raises(FilterError) as info:
        PciFilter().parse_slot(text)
    assert str(info.value) == message


def test_parse_vendor_device():
    f = PciFilter()
    f.parse_id("8086:1234")
    assert (f.vendor, f.device, f.device_class, f.prog_if) == (0x8086, 0x1234, -1, -1)


def test_parse_empty_ids():
    f = PciFilter()
    f.parse_id(":")
    assert (f.vendor, f.device) == (-1, -1)


def test_parse_class_and_progif():
    f = PciFilter()
    f.parse_id("::0300:8a")
    assert f.device_class == 0x0300
    assert f.device_class_mask == 0xFFFFFFFF
    assert f.prog_if == 0x8A


@pytest.mark.parametrize(
    "text,message",
    [
        ("8086", "At least two fields must be given"),
        ("10000:0", "Invalid vendor ID"),
        ("0:10000", "Invalid device ID"),
        ("::0x0300", "Invalid class code"),
        (":::100", "Invalid programming interface code"),
        ("1:2:3:4:5", "Too many fields"),
    ],
)
def test_id_errors(text, message):
    with pytest.raises(FilterError) as info:
        PciFilter().parse_id(text)
    assert str(info.value) == message


def test_match_by_slot():
    f = PciFilter()
    f.parse_slot("1:2.3")
    assert f.match(make_dev(bus=1, slot=2, func=3))
    assert not f.match(make_dev(bus=1, slot=2, func=4))
    assert not f.match(make_dev(bus=0, slot=2, func=3))


def test_match_by_ids():
    f = PciFilter()
    f.parse_id("8086:1234")
    assert f.match(make_dev(vendor=0x8086, device=0x1234))
    assert not f.match(make_dev(vendor=0x8086, device=0x1235))
    assert not f.match(make_dev(vendor=0x10DE, device=0x1234))


def test_match_class_with_wildcard_digits():
    f = PciFilter()
    f.parse_id("::03xx")
    assert f.device_class == 0x0300
    assert f.match(make_dev(device_class=0x0302))
    assert f.match(make_dev(device_class=0x03FF))
    assert not f.match(make_dev(device_class=0x0402))


def test_match_progif():
    f = PciFilter()
    f.parse_id(":::8a")
    assert f.match(make_dev(prog_if=0x8A))
    assert not f.match(make_dev(prog_if=0x80))