# Copyright (c) 2026, Oracle and/or its affiliates.
# Licensed under the Universal Permissive License v 1.0 as shown at https://oss.oracle.com/licenses/upl/
from pathlib import Path
from typing import Dict
from typing import Iterable
from typing import List
from typing import NamedTuple
from typing import Optional
from typing import Set
from typing import Tuple

import pytest

from elfimage import build_elf
from elfimage import modinfo_bytes

from kmod_tools.context import KmodContext
from kmod_tools.context import ModuleRef
from kmod_tools.errors import ContextUnavailable


class FakeModule(NamedTuple):
    size: int
    refcnt: int
    holders: List[str]


class FakeKernel:
    """
    An instrumented stand-in for the kernel module subsystem

    ``open()`` is a context factory, suitable for ``list_modules()``. Every
    context it creates is kept, so that tests can check that sessions were
    closed and that no module handle was leaked.
    """

    def __init__(self, modules_dir: Path):
        self.modules_dir = modules_dir
        self.loaded: Dict[str, FakeModule] = {}
        self.info: Dict[str, List[Tuple[str, str]]] = {}
        self.aliases: Dict[str, List[str]] = {}
        self.builtin: Set[str] = set()
        self.info_errors: Set[str] = set()
        self.fail_open = False
        self.fail_list = False
        self.fail_lookup = False
        self.fail_filter = False
        self.contexts: List["FakeContext"] = []
        self.opens = 0
        self.closes = 0
        self.calls: List[Tuple[str, str]] = []

    def add(
        self,
        name: str,
        size: int = 4096,
        refcnt: int = 0,
        holders: Iterable[str] = (),
        info: Optional[List[Tuple[str, str]]] = None,
    ) -> None:
        self.loaded[name] = FakeModule(size, refcnt, list(holders))
        if info is not None:
            self.info[name] = info

    def open(self, **kwargs) -> "FakeContext":
        if self.fail_open:
            raise ContextUnavailable("could not obtain kmod context")
        self.opens += 1
        ctx = FakeContext(self)
        self.contexts.append(ctx)
        return ctx

    @property
    def outstanding(self) -> int:
        return sum(ctx.outstanding for ctx in self.contexts)


class FakeContext(KmodContext):
    def __init__(self, kernel: FakeKernel):
        self.kernel = kernel
        super().__init__(kernel.modules_dir, "fake")

    def _close(self) -> None:
        self.kernel.closes += 1

    def _acquire(
        self,
        name: str,
        path: Optional[Path] = None,
        builtin: Optional[bool] = None,
    ) -> ModuleRef:
        if name in self.kernel.builtin:
            builtin = True
        return super()._acquire(name, path, builtin)

    def _loaded_names(self) -> List[str]:
        if self.kernel.fail_list:
            raise OSError("/proc/modules: no such file")
        return list(self.kernel.loaded)

    def _module_size(self, name: str) -> int:
        return self.kernel.loaded[name].size

    def _module_refcnt(self, name: str) -> int:
        return self.kernel.loaded[name].refcnt

    def _holder_names(self, name: str) -> List[str]:
        return list(self.kernel.loaded[name].holders)

    def lookup(self, alias: str) -> List[ModuleRef]:
        self.kernel.calls.append(("lookup", alias))
        if self.kernel.fail_lookup:
            raise OSError("modules.alias: permission denied")
        if alias in self.kernel.aliases:
            names = self.kernel.aliases[alias]
        elif alias in self.kernel.info or alias in self.kernel.builtin:
            names = [alias]
        else:
            names = []
        return self._acquire_all(names)

    def module_from_path(self, path) -> ModuleRef:
        self.kernel.calls.append(("module_from_path", str(path)))
        return super().module_from_path(path)

    def apply_filter(self, refs, flags) -> List[ModuleRef]:
        self.kernel.calls.append(("apply_filter", str(flags)))
        if self.kernel.fail_filter:
            raise ValueError("filter exploded")
        return super().apply_filter(refs, flags)

    def module_info(self, ref: ModuleRef) -> List[Tuple[str, str]]:
        self.kernel.calls.append(("module_info", ref.name))
        if ref.name in self.kernel.info_errors:
            raise OSError(f"{ref.name}.ko: input/output error")
        if ref.path is not None:
            return super().module_info(ref)
        return list(self.kernel.info.get(ref.name, []))


@pytest.fixture
def kernel(tmp_path) -> FakeKernel:
    return FakeKernel(tmp_path / "lib-modules")


@pytest.fixture
def make_ko(tmp_path):
    """Return a function writing a module image with the given records"""

    def make(
        relpath: str, records: Iterable[Tuple[str, str]], root: Path = tmp_path
    ) -> Path:
        path = root / relpath
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(build_elf(modinfo_bytes(records)))
        return path

    return make


class FakeSystem(NamedTuple):
    sysfs: Path
    procfs: Path
    modules_dir: Path
    release: str

    @property
    def release_dir(self) -> Path:
        return self.modules_dir / self.release

    def kwargs(self):
        return dict(
            sysfs=self.sysfs,
            procfs=self.procfs,
            modules_dir=self.modules_dir,
            release=self.release,
        )


FOO_RECORDS = [
    ("description", "built-in networking driver"),
    ("author", "A. Hacker"),
    ("license", "GPL"),
    ("parm", "debug:enable verbose logs"),
    ("parmtype", "debug:bool"),
    ("alias", "pci:v00001234d*sv*sd*bc*sc*i*"),
    ("depends", ""),
    ("name", "foo"),
]


@pytest.fixture
def fake_system(tmp_path, make_ko) -> FakeSystem:
    """
    A /proc, /sys and /lib/modules tree with two loaded modules

    ``bar`` is loaded last, so it comes first in /proc/modules. It uses
    ``foo``. Only ``foo`` has a module image; ``crc32c`` is built in.
    """
    system = FakeSystem(
        tmp_path / "sys", tmp_path / "proc", tmp_path / "lib/modules", "6.1.0"
    )
    system.procfs.mkdir()
    (system.procfs / "modules").write_text(
        "bar 4096 0 - Live 0xffffffffc0a00000\n"
        "foo 12288 1 bar, Live 0xffffffffc0900000 (OE)\n"
    )
    for name, refcnt, holders in (("foo", 1, ["bar"]), ("bar", 0, [])):
        moddir = system.sysfs / "module" / name
        (moddir / "holders").mkdir(parents=True)
        (moddir / "refcnt").write_text(f"{refcnt}\n")
        for holder in holders:
            (moddir / "holders" / holder).mkdir()

    root = system.release_dir
    make_ko("kernel/drivers/net/foo.ko", FOO_RECORDS, root=root)
    (root / "modules.dep").write_text(
        "kernel/drivers/net/foo.ko:\n"
        "kernel/drivers/net/bar.ko: kernel/drivers/net/foo.ko\n"
    )
    (root / "modules.alias").write_text(
        "# Aliases extracted from modules themselves.\n"
        "alias pci:v00001234d*sv*sd*bc*sc*i* foo\n"
        "alias net-pf-99 foo\n"
    )
    (root / "modules.builtin").write_text("kernel/crypto/crc32c_generic.ko\n")
    return system


def pytest_addoption(parser):
    parser.addoption(
        "--live",
        action="store_true",
        default=False,
        help="also run tests against the running kernel",
    )


def pytest_configure(config):
    # Tests marked "live" read the running kernel's /proc and /sys. They are
    # skipped unless --live is given, since the results depend on the host.
    config.addinivalue_line("markers", "live: requires the running kernel")


def pytest_runtest_setup(item: pytest.Item):
    if item.get_closest_marker("live") and not item.config.getoption("live"):
        pytest.skip("test requires --live")
