import struct

import pytest

from pcilib.access import PciAccess
from pcilib.acpi import ECAM_BUS_SIZE, calculate_checksum
from pcilib.constants import AccessType
from pcilib.device import PciError
from pcilib.ecam import (
    EcamMethods,
    EcamRange,
    get_bus_addr,
    parse_addrs,
    validate_addrs,
)


@pytest.fixture
def devmem(tmp_path):
    path = tmp_path / "mem"
    with open(path, "wb") as f:
        f.truncate(ECAM_BUS_SIZE)
        f.seek(0)
        f.write(struct.pack("<HH", 0x1234, 0x5678))
    return path


def _access(tmp_path, devmem, addrs, writeable=False, acpimcfg=None):
    access = PciAccess({AccessType.ECAM: EcamMethods()})
    access.method = AccessType.ECAM
    access.writeable = writeable
    access.set_param("devmem.path", str(devmem))
    access.set_param("ecam.addrs", addrs)
    access.set_param("ecam.acpimcfg", str(acpimcfg or tmp_path / "missing-mcfg"))
    access.set_param("ecam.efisystab", str(tmp_path / "missing-systab"))
    return access


def _mcfg_bytes(allocations):
    body = b"".join(struct.pack("<QHBBI", addr, seg, s, e, 0) for addr, seg, s, e in allocations)
    length = 44 + len(body)
    header = (
        b"MCFG"
        + struct.pack("<I", length)
        + bytes([1, 0])
        + b"OEMID "
        + b"OEMTABLE"
        + struct.pack("<I", 1)
        + b"ASLC"
        + struct.pack("<I", 1)
        + bytes(8)
    )
    table = bytearray(header + body)
    table[9] = calculate_checksum(table)
    return bytes(table)


def test_parse_single_bus_range():
    assert parse_addrs("0:0-0:0") == [EcamRange(0, 0, 0, 0, ECAM_BUS_SIZE)]


def test_parse_with_domain_and_bus_range():
    (rng,) = parse_addrs("1:2-3:10000000")
    assert rng == EcamRange(1, 2, 3, 0x10000000, 2 * ECAM_BUS_SIZE)


def test_parse_open_bus_range_extends_to_last_bus():
    (rng,) = parse_addrs("5:e0000000")
    assert rng.domain == 0
    assert rng.end_bus == 0xFF
    assert rng.length == (0xFF - 5 + 1) * ECAM_BUS_SIZE


def test_parse_explicit_length_sets_end_bus():
    (rng,) = parse_addrs("0:e0000000+200000")
    assert rng.length == 0x200000
    assert rng.end_bus == 2


def test_parse_multiple_entries():
    ranges = parse_addrs("0:0-0:0,1:0-0:100000")
    assert [r.domain for r in ranges] == [0, 1]
    assert ranges[1].address == 0x100000


def test_parse_empty_is_no_ranges():
    assert parse_addrs("") == []
    assert validate_addrs("") is True


@pytest.mark.parametrize(
    "text",
    [
        "abc",
        "0:1:2:3",
        "0:0:3",
        "0:5-4:0",
        "0:100:0",
        "0:0-0:0+200000",
        "0:0:0,",
        "g:0:0",
        "0:0:",
    ],
)
def test_invalid_addrs(text):
    assert validate_addrs(text) is False
    with pytest.raises(ValueError):
        parse_addrs(text)


def test_get_bus_addr_offsets_into_range():
    ranges = parse_addrs("0:2-3:10000000")
    assert get_bus_addr(ranges, 0, 3) == (0x10000000 + ECAM_BUS_SIZE, ECAM_BUS_SIZE)
    assert get_bus_addr(ranges, 0, 2) == (0x10000000, 2 * ECAM_BUS_SIZE)


def test_get_bus_addr_misses():
    ranges = parse_addrs("0:2-3:10000000")
    assert get_bus_addr(ranges, 1, 2) is None
    assert get_bus_addr(ranges, 0, 4) is None
    short = parse_addrs("0:0:0+100000")
    assert get_bus_addr(short, 0, 1) is None


def test_config_defines_params(tmp_path):
    access = PciAccess({AccessType.ECAM: EcamMethods()})
    assert access.get_param("ecam.addrs") == ""
    assert access.get_param("devmem.path") == "/dev/mem"


def test_detect(tmp_path, devmem):
    methods = EcamMethods()
    assert methods.detect(_access(tmp_path, devmem, "0:0-0:0")) is True
    assert methods.detect(_access(tmp_path, devmem, "")) is False
    assert methods.detect(_access(tmp_path, devmem, "0:0:3")) is False
    assert methods.detect(_access(tmp_path, tmp_path / "nomem", "0:0-0:0")) is False


def test_scan_and_read(tmp_path, devmem):
    with _access(tmp_path, devmem, "0:0-0:0") as access:
        access.init()
        access.scan_bus()
        assert [(d.domain, d.bus, d.dev, d.func) for d in access.devices] == [(0, 0, 0, 0)]
        dev = access.devices[0]
        assert dev.vendor_id == 0x1234
        assert dev.device_id == 0x5678
        assert dev.read_long(0) == 0x56781234
        assert access.methods.read(dev, 4096, 4) is None
        assert access.methods.read(dev, 0, 3) == struct.pack("<HH", 0x1234, 0x5678)[:3]


def test_scan_multiple_domains(tmp_path, devmem):
    with _access(tmp_path, devmem, "1:0-0:0,0:0-0:0") as access:
        access.init()
        access.scan_bus()
        found = {(d.domain, d.bus, d.dev, d.func) for d in access.devices}
        assert found == {(0, 0, 0, 0), (1, 0, 0, 0)}


def test_write_through(tmp_path, devmem):
    access = _access(tmp_path, devmem, "0:0-0:0", writeable=True)
    access.init()
    dev = access.get_dev(0, 0, 1, 0)
    assert dev.write_word(4, 0xBEEF) is True
    assert dev.read_word(4) == 0xBEEF
    access.cleanup()
    data = devmem.read_bytes()
    assert data[(1 << 15) + 4:(1 << 15) + 6] == struct.pack("<H", 0xBEEF)
    assert access.fd == -1


def test_write_refused_when_read_only(tmp_path, devmem):
    with _access(tmp_path, devmem, "0:0-0:0") as access:
        access.init()
        dev = access.get_dev(0, 0, 0, 0)
        assert dev.write_byte(4, 1) is False


def test_read_outside_mapped_domain_gives_ones(tmp_path, devmem):
    with _access(tmp_path, devmem, "0:0-0:0") as access:
        access.init()
        dev = access.get_dev(3, 0, 0, 0)
        assert dev.read_long(0) == 0xFFFFFFFF


def test_init_via_mcfg_file(tmp_path, devmem):
    mcfg = tmp_path / "MCFG"
    mcfg.write_bytes(_mcfg_bytes([(0, 0, 0, 0)]))
    with _access(tmp_path, devmem, "", acpimcfg=mcfg) as access:
        assert access.methods is None
        access.init()
        access.scan_bus()
        assert [d.vendor_id for d in access.devices] == [0x1234]


def test_init_without_source_fails(tmp_path, devmem):
    access = _access(tmp_path, devmem, "")
    with pytest.raises(PciError):
        access.init()


def test_init_with_bad_addrs_fails(tmp_path, devmem):
    access = _access(tmp_path, devmem, "0:5-4:0")
    with pytest.raises(PciError):
        access.init()


def test_init_without_devmem_fails(tmp_path):
    access = _access(tmp_path, tmp_path / "nomem", "0:0-0:0")
    with pytest.raises(PciError):
        access.init()


def test_init_fails_when_region_cannot_be_mapped(tmp_path, devmem):
    access = _access(tmp_path, devmem, "0:0-1:0")
    with pytest.raises(PciError):
        access.init()