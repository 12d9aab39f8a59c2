# Copyright (c) 2026, Oracle and/or its affiliates.
# Licensed under the Universal Permissive License v 1.0 as shown at https://oss.oracle.com/licenses/upl/
"""
Kernel module sessions backed by drgn

Unlike :class:`kmod_tools.sysfs.SysfsContext`, this works on vmcores as well as
the running kernel, since all state is read from the kernel's own ``struct
module`` list. It does require type information for ``struct module``, either
DWARF debuginfo or CTF.
"""
import logging
import os
from pathlib import Path
from typing import Dict
from typing import Iterable
from typing import List
from typing import Optional
from typing import Tuple
from typing import Union

import drgn
from drgn import FaultError
from drgn import Object
from drgn import Program
from drgn.helpers.common.format import escape_ascii_string
from drgn.helpers.linux.list import list_for_each_entry
from drgn.helpers.linux.module import for_each_module
from drgn.helpers.linux.module import module_address_regions

from kmod_tools.config import config_path
from kmod_tools.context import KmodContext
from kmod_tools.errors import ContextUnavailable
from kmod_tools.logging import FilterMissingDebugSymbolsMessages
from kmod_tools.logging import get_logger

__all__ = (
    "DrgnContext",
    "KernelModule",
    "for_each_module_use",
    "open_program",
)

log = get_logger(__name__)

# The kernel keeps one reference on every live module, and subtracts it when
# reporting the reference count.
MODULE_REF_BASE = 1


def for_each_module_use(source_list_addr: Object) -> Iterable[Object]:
    """
    Provide the list of ``struct module_use`` as an iterable object

    :param source_list_addr: ``struct module.source_list`` address
    :returns: An iterable of ``struct module_use *``
    """
    return list_for_each_entry(
        "struct module_use", source_list_addr, "source_list"
    )


class KernelModule:
    """
    Wraps a ``struct module *`` with the accessors needed to list it

    >>> km = KernelModule(next(for_each_module(prog)))
    >>> km
    KernelModule(nf_nat)
    >>> km.mem_usage()
    61440
    """

    name: str
    obj: Object

    def __init__(self, obj: Object):
        self.obj = obj
        self.name = escape_ascii_string(
            obj.name.string_(), escape_backslash=True
        )

    def __repr__(self) -> str:
        return f"KernelModule({self.name})"

    @classmethod
    def all(cls, prog: Program) -> Iterable["KernelModule"]:
        """
        Get an iterator of KernelModule helpers for each loaded module

        The kernel adds modules to the head of its list, so the most recently
        loaded module comes first.
        """
        for mod in for_each_module(prog):
            yield cls(mod)

    def address_regions(self) -> List[Tuple[int, int]]:
        """Return the (start, size) memory regions of the module"""
        return module_address_regions(self.obj)

    def mem_usage(self) -> int:
        """
        Return the sum of the memory usage of this module.
        """
        return sum(r[1] for r in self.address_regions())

    def refcount(self) -> int:
        """
        Return the reference count, as /proc/modules reports it

        Kernels built without CONFIG_MODULE_UNLOAD don't count references, in
        which case 0 is returned.
        """
        if not hasattr(self.obj, "refcnt"):
            return 0
        return max(int(self.obj.refcnt.counter) - MODULE_REF_BASE, 0)

    def holders(self) -> List[str]:
        """Return the names of modules using this one, in kernel list order"""
        return [
            escape_ascii_string(use.source.name.string_())
            for use in for_each_module_use(self.obj.source_list.address_of_())
        ]


def open_program(vmcore: Optional[Union[str, Path]] = None) -> Program:
    """
    Return a drgn program for a vmcore or, by default, the running kernel

    Debuginfo is loaded from the default locations. Only missing vmlinux
    debuginfo is fatal, since the module list needs nothing else.

    :raises ContextUnavailable: the kernel can't be attached to, or there is no
      type information for it
    """
    prog = Program()
    try:
        if vmcore is not None:
            prog.set_core_dump(str(vmcore))
        elif os.geteuid() == 0:
            prog.set_kernel()
        else:
            from drgn.internal.sudohelper import open_via_sudo

            prog.set_core_dump(open_via_sudo("/proc/kcore", os.O_RDONLY))
    except (OSError, ValueError) as e:
        raise ContextUnavailable(f"could not obtain kmod context: {e}") from e

    drgnlog = logging.getLogger("drgn")
    debug_filter = FilterMissingDebugSymbolsMessages()
    drgnlog.addFilter(debug_filter)
    try:
        prog.load_default_debug_info()
    except drgn.MissingDebugInfoError as e:
        if prog.main_module().wants_debug_file():
            raise ContextUnavailable(
                "could not obtain kmod context: unable to find vmlinux "
                "debuginfo"
            ) from e
        log.debug("continuing without debuginfo for some modules")
    finally:
        drgnlog.removeFilter(debug_filter)
    return prog


class DrgnContext(KmodContext):
    """
    Session with a kernel program opened by drgn

    :param prog: an already prepared program; when omitted one is opened with
      :func:`open_program`
    :param vmcore: vmcore to open instead of the running kernel
    :param modules_dir: directory holding the module trees of each release
    :param release: kernel release whose module index is used (default: the
      release recorded in the kernel)
    """

    prog: Program

    def __init__(
        self,
        prog: Optional[Program] = None,
        vmcore: Optional[Union[str, Path]] = None,
        modules_dir: Optional[Path] = None,
        release: Optional[str] = None,
    ):
        if prog is None:
            prog = open_program(vmcore)
        self.prog = prog
        if release is None:
            try:
                release = prog["UTS_RELEASE"].string_().decode()
            except (LookupError, FaultError) as e:
                raise ContextUnavailable(
                    f"could not obtain kmod context: {e}"
                ) from e
        self._modules: Dict[str, KernelModule] = {}
        super().__init__(modules_dir or config_path("modules"), release)

    def __repr__(self) -> str:
        return f"DrgnContext({self.release})"

    def _module(self, name: str) -> KernelModule:
        try:
            return self._modules[name]
        except KeyError:
            raise LookupError(f"module {name} is not loaded") from None

    def _loaded_names(self) -> List[str]:
        try:
            self._modules = {km.name: km for km in KernelModule.all(self.prog)}
        except (FaultError, LookupError) as e:
            raise OSError(f"could not read the kernel module list: {e}") from e
        return list(self._modules)

    def _module_size(self, name: str) -> int:
        return self._module(name).mem_usage()

    def _module_refcnt(self, name: str) -> int:
        return self._module(name).refcount()

    def _holder_names(self, name: str) -> List[str]:
        try:
            return self._module(name).holders()
        except FaultError as e:
            raise OSError(f"could not read holders of {name}: {e}") from e
