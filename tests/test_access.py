import pytest

from pcilib.access import PciAccess, PciParam
from pcilib.constants import ACCESS_MAX, AccessType
from pcilib.device import PciDev, PciError, PciMethods


class Backend(PciMethods):
    def __init__(self, name, detects=True):
        self.name = name
        self.detects = detects
        self.calls = []

    def config(self, access):
        self.calls.append("config")
        access.define_param(f"{self.name}.path", "/nowhere", f"Path for {self.name}")

    def detect(self, access):
        self.calls.append("detect")
        return self.detects

    def init(self, access):
        self.calls.append("init")

    def cleanup(self, access):
        self.calls.append("cleanup")

    def scan(self, access):
        self.calls.append("scan")
        access.link_dev(access.get_dev(0, 1, 2, 3))

    def cleanup_dev(self, dev):
        self.calls.append(("cleanup_dev", dev.bus))


def test_config_defines_params_and_walk_lists_them():
    access = PciAccess({AccessType.DUMP: Backend("dump"), AccessType.ECAM: Backend("ecam")})
    names = [p.name for p in access.walk_params()]
    assert names == ["dump.path", "ecam.path"]
    assert all(isinstance(p, PciParam) for p in access.walk_params())


def test_get_and_set_param():
    access = PciAccess({AccessType.DUMP: Backend("dump")})
    assert access.get_param("dump.path") == "/nowhere"
    access.set_param("dump.path", "/tmp/file")
    assert access.get_param("dump.path") == "/tmp/file"
    assert access.get_param("missing") is None


def test_set_unknown_param_raises():
    access = PciAccess()
    with pytest.raises(KeyError):
        access.set_param("nope", "1")


def test_bad_table_index_rejected():
    with pytest.raises(ValueError):
        PciAccess({ACCESS_MAX: Backend("x")})


def test_lookup_method():
    access = PciAccess({AccessType.DUMP: Backend("dump")})
    assert access.lookup_method("dump") == AccessType.DUMP
    assert access.lookup_method("linux-sysfs") is None


def test_get_method_name():
    access = PciAccess({AccessType.DUMP: Backend("dump")})
    assert access.get_method_name(AccessType.DUMP) == "dump"
    assert access.get_method_name(AccessType.ECAM) == ""
    assert access.get_method_name(-1) is None
    assert access.get_method_name(ACCESS_MAX) is None


def test_auto_probe_follows_sequence():
    sysfs = Backend("linux-sysfs")
    ecam = Backend("ecam")
    access = PciAccess({AccessType.ECAM: ecam, AccessType.SYS_BUS_PCI: sysfs})
    access.init()
    assert access.methods is sysfs
    assert access.method == AccessType.SYS_BUS_PCI
    assert "init" in sysfs.calls
    assert "detect" not in ecam.calls


def test_auto_probe_skips_failing_detection():
    sysfs = Backend("linux-sysfs", detects=False)
    ecam = Backend("ecam")
    access = PciAccess({AccessType.ECAM: ecam, AccessType.SYS_BUS_PCI: sysfs})
    access.init()
    assert access.methods is ecam
    assert access.method == AccessType.ECAM


def test_dump_is_not_probed_automatically():
    access = PciAccess({AccessType.DUMP: Backend("dump")})
    with pytest.raises(PciError, match="Cannot find any working access method."):
        access.init()


def test_explicit_method_used_without_detect():
    dump = Backend("dump", detects=False)
    access = PciAccess({AccessType.DUMP: dump})
    access.method = AccessType.DUMP
    access.init()
    assert access.methods is dump
    assert "detect" not in dump.calls
    assert "init" in dump.calls


def test_explicit_unsupported_method():
    access = PciAccess()
    access.method = AccessType.ECAM
    with pytest.raises(PciError, match="This access method is not supported."):
        access.init()


def test_error_calls_handler_then_raises():
    seen = []
    access = PciAccess()
    access.on_error = seen.append
    with pytest.raises(PciError):
        access.error("boom")
    assert seen == ["boom"]


def test_warning_goes_to_stderr(capsys):
    PciAccess().warning("careful")
    assert capsys.readouterr().err == "pcilib: careful\n"


def test_debug_only_when_debugging(capsys):
    access = PciAccess()
    access.debug("quiet")
    assert capsys.readouterr().out == ""
    access.debugging = 1
    access.debug("loud")
    assert capsys.readouterr().out == "loud"


def test_get_dev_and_link_prepends():
    access = PciAccess({AccessType.DUMP: Backend("dump")})
    access.method = AccessType.DUMP
    access.init()
    first = access.get_dev(0, 1, 2, 3)
    second = access.get_dev(0x10000, 4, 5, 6)
    access.link_dev(first)
    access.link_dev(second)
    assert access.devices == [second, first]
    assert (first.domain, first.bus, first.dev, first.func) == (0, 1, 2, 3)
    assert second.domain_16 == 0xFFFF
    assert first.hdrtype == -1
    assert isinstance(access.alloc_dev(), PciDev)


def test_scan_bus_delegates():
    backend = Backend("dump")
    access = PciAccess({AccessType.DUMP: backend})
    access.method = AccessType.DUMP
    access.init()
    access.scan_bus()
    assert "scan" in backend.calls
    assert [d.bus for d in access.devices] == [1]


def test_clone_copies_options():
    access = PciAccess({AccessType.DUMP: Backend("dump")})
    access.writeable = True
    access.buscentric = True
    access.debugging = 2
    access.on_warning = print
    other = access.clone()
    assert other is not access
    assert (other.writeable, other.buscentric, other.debugging) == (True, True, 2)
    assert other.on_warning is print
    assert other.methods is None


def test_cleanup_releases_devices_and_backend():
    backend = Backend("dump")
    access = PciAccess({AccessType.DUMP: backend})
    access.method = AccessType.DUMP
    access.init()
    access.scan_bus()
    access.cleanup()
    assert ("cleanup_dev", 1) in backend.calls
    assert backend.calls[-1] == "cleanup"
    assert access.devices == []
    assert access.methods is None


def test_context_manager_cleans_up():
    backend = Backend("dump")
    with PciAccess({AccessType.DUMP: backend}) as access:
        access.method = AccessType.DUMP
        access.init()
    assert backend.calls[-1] == "cleanup"