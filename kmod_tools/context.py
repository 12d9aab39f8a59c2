# Copyright (c) 2026, Oracle and/or its affiliates.
# Licensed under the Universal Permissive License v 1.0 as shown at https://oss.oracle.com/licenses/upl/
"""
Sessions with the kernel module subsystem

A :class:`KmodContext` is created for each query and closed exactly once when
the query is done. All module handles (:class:`ModuleRef`) come from a context
and must be given back with :meth:`KmodContext.unref`. The context counts
outstanding handles, which makes leaks visible in tests and in the debug log.

Prefer the :func:`module_ref` and :func:`module_list` context managers over
calling ``unref()`` by hand, so that handles are released on error paths too::

    with open_context() as ctx:
        with module_list(ctx, ctx.loaded_modules()) as entries:
            for entry in entries:
                with module_ref(ctx, ctx.get_module(entry)) as mod:
                    print(ctx.module_name(mod))

Backends only need to describe the live state of the kernel (which modules are
loaded, their sizes, reference counts and holders). Name and alias lookup, the
built-in filter and ``.modinfo`` extraction use the depmod index of the
kernel release, and are shared by all backends.
"""
import abc
import contextlib
from pathlib import Path
from typing import Iterable
from typing import Iterator
from typing import List
from typing import Optional
from typing import Tuple
from typing import Union

from kmod_tools.config import config_path
from kmod_tools.config import config_value
from kmod_tools.elf import read_modinfo
from kmod_tools.elf import strip_module_suffix
from kmod_tools.errors import ContextUnavailable
from kmod_tools.logging import get_logger
from kmod_tools.modindex import ModuleIndex

__all__ = (
    "KMOD_FILTER_BLACKLIST",
    "KMOD_FILTER_BUILTIN",
    "KmodContext",
    "ModuleRef",
    "module_list",
    "module_ref",
    "open_context",
)

log = get_logger(__name__)

KMOD_FILTER_BLACKLIST = 0x00001
KMOD_FILTER_BUILTIN = 0x00002


class ModuleRef:
    """
    A handle to one module, owned by whoever obtained it from a context

    Handles of loaded modules only know their name. The image path and the
    built-in flag come from the depmod index, and are filled in by the
    operations that need them (see :meth:`KmodContext.resolve`), so that
    listing modules never reads the index.

    :param name: module name, as the kernel spells it
    :param path: path of the module image, if one is known
    :param builtin: whether the module is compiled into the kernel image, or
      None when this hasn't been looked up yet
    """

    __slots__ = ("name", "path", "builtin", "released")

    def __init__(
        self,
        name: str,
        path: Optional[Path] = None,
        builtin: Optional[bool] = None,
    ):
        self.name = name
        self.path = path
        self.builtin = builtin
        self.released = False

    def __repr__(self) -> str:
        return f"ModuleRef({self.name})"


class KmodContext(abc.ABC):
    """
    The base class for kernel module subsystem sessions

    :param modules_dir: the directory containing one directory per kernel
      release, normally ``/lib/modules``
    :param release: the kernel release whose module index should be used
    """

    index: ModuleIndex
    outstanding: int
    closed: bool

    def __init__(self, modules_dir: Path, release: str):
        self.release = release
        self.index = ModuleIndex(Path(modules_dir) / release)
        self.outstanding = 0
        self.closed = False

    def __enter__(self) -> "KmodContext":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        """
        Release the session

        Only the first call has an effect. Outstanding module handles at this
        point are a bug in the caller, and are reported in the log.
        """
        if self.closed:
            return
        self.closed = True
        if self.outstanding:
            log.warning(
                "closing context with %d unreleased module references",
                self.outstanding,
            )
        self._close()

    def _close(self) -> None:
        pass

    # Live kernel state, provided by each backend

    @abc.abstractmethod
    def _loaded_names(self) -> List[str]:
        """Names of loaded modules, in the order the kernel lists them"""
        raise NotImplementedError()

    @abc.abstractmethod
    def _module_size(self, name: str) -> int:
        raise NotImplementedError()

    @abc.abstractmethod
    def _module_refcnt(self, name: str) -> int:
        raise NotImplementedError()

    @abc.abstractmethod
    def _holder_names(self, name: str) -> List[str]:
        """Names of the modules which hold a reference to ``name``"""
        raise NotImplementedError()

    # Reference accounting

    def _acquire(
        self,
        name: str,
        path: Optional[Path] = None,
        builtin: Optional[bool] = None,
    ) -> ModuleRef:
        ref = ModuleRef(name, path, builtin)
        self.outstanding += 1
        return ref

    def _acquire_all(self, names: Iterable[str]) -> List[ModuleRef]:
        refs: List[ModuleRef] = []
        try:
            for name in names:
                refs.append(self._acquire(name))
        except BaseException:
            self.unref_list(refs)
            raise
        return refs

    def resolve(self, ref: ModuleRef) -> None:
        """
        Fill in the image path and built-in flag of ``ref`` from the index

        :raises OSError: an index file exists but can't be read
        :raises ValueError: an index file can't be decoded
        """
        if ref.builtin is not None:
            return
        if ref.path is None:
            ref.path = self.index.module_path(ref.name)
        ref.builtin = self.index.is_builtin(ref.name)

    def unref(self, ref: ModuleRef) -> None:
        """Release a module handle"""
        if ref.released:
            raise ValueError(f"{ref!r} was already released")
        ref.released = True
        self.outstanding -= 1

    def unref_list(self, refs: Iterable[ModuleRef]) -> None:
        """Release every handle of a list"""
        for ref in refs:
            self.unref(ref)

    # Module handles

    def loaded_modules(self) -> List[ModuleRef]:
        """
        Return handles for every loaded module, in kernel order

        :raises OSError: the list can't be read from the kernel
        """
        return self._acquire_all(self._loaded_names())

    def lookup(self, alias: str) -> List[ModuleRef]:
        """
        Return handles for the modules a name or alias refers to

        :returns: candidate handles; an empty list if nothing matched
        :raises OSError: an index file exists but can't be read
        :raises ValueError: an index file can't be decoded
        """
        names = self.index.lookup(alias)
        refs = self._acquire_all(names)
        try:
            for ref in refs:
                self.resolve(ref)
        except BaseException:
            self.unref_list(refs)
            raise
        return refs

    def module_from_path(self, path: Union[str, Path]) -> ModuleRef:
        """
        Return a handle describing the module image at ``path``

        The module is not inserted into the kernel, the handle can only be
        used to read static information.

        :raises FileNotFoundError: ``path`` is not a regular file
        """
        path = Path(path)
        if not path.is_file():
            raise FileNotFoundError(f"{path}: not a regular file")
        return self._acquire(
            strip_module_suffix(path.name), path=path, builtin=False
        )

    def apply_filter(
        self, refs: Iterable[ModuleRef], flags: int
    ) -> List[ModuleRef]:
        """
        Return new handles for the modules of ``refs`` which pass the filter

        Only :data:`KMOD_FILTER_BUILTIN` is supported. The input handles are
        not released.

        :raises ValueError: unsupported filter flags were given, or the index
          can't be decoded
        :raises OSError: an index file exists but can't be read
        """
        if flags & ~KMOD_FILTER_BUILTIN:
            raise ValueError(f"unsupported module filter flags: {flags:#x}")
        refs = list(refs)
        if flags & KMOD_FILTER_BUILTIN:
            for r in refs:
                self.resolve(r)
        keep = [
            r
            for r in refs
            if not (flags & KMOD_FILTER_BUILTIN and r.builtin)
        ]
        ret: List[ModuleRef] = []
        try:
            for r in keep:
                ret.append(self._acquire(r.name, r.path, r.builtin))
        except BaseException:
            self.unref_list(ret)
            raise
        return ret

    def get_module(self, entry: ModuleRef) -> ModuleRef:
        """
        Return a new handle for a list entry

        The new handle must be released on its own, independently of the list
        it came from.
        """
        if entry.released:
            raise ValueError(f"{entry!r} was already released")
        return self._acquire(entry.name, entry.path, entry.builtin)

    def module_holders(self, ref: ModuleRef) -> List[ModuleRef]:
        """Return handles for the modules holding a reference to ``ref``"""
        return self._acquire_all(self._holder_names(ref.name))

    def module_name(self, ref: ModuleRef) -> str:
        return ref.name

    def module_size(self, ref: ModuleRef) -> int:
        return self._module_size(ref.name)

    def module_refcnt(self, ref: ModuleRef) -> int:
        return self._module_refcnt(ref.name)

    def module_info(self, ref: ModuleRef) -> List[Tuple[str, str]]:
        """
        Return the raw ``.modinfo`` records of a module

        :raises OSError: the module image or the index can't be found or read
        :raises ValueError: the module image is not a valid kernel module
        """
        self.resolve(ref)
        if ref.builtin and ref.path is None:
            records = self.index.builtin_modinfo(ref.name)
            if records is None:
                raise ValueError(
                    f"no modinfo recorded for built-in module {ref.name}"
                )
            return list(records)
        if ref.path is None:
            raise FileNotFoundError(
                f"module {ref.name} has no image in {self.index.root}"
            )
        return read_modinfo(ref.path)


@contextlib.contextmanager
def module_ref(ctx: KmodContext, ref: ModuleRef) -> Iterator[ModuleRef]:
    """Release ``ref`` when the block exits"""
    try:
        yield ref
    finally:
        ctx.unref(ref)


@contextlib.contextmanager
def module_list(
    ctx: KmodContext, refs: List[ModuleRef]
) -> Iterator[List[ModuleRef]]:
    """Release every handle in ``refs`` when the block exits"""
    try:
        yield refs
    finally:
        ctx.unref_list(refs)


def open_context(backend: Optional[str] = None, **kwargs) -> KmodContext:
    """
    Open a session with the kernel module subsystem

    :param backend: ``"sysfs"`` to read the running kernel through /proc and
      /sys, or ``"drgn"`` to inspect a kernel with drgn (the running kernel
      or a vmcore). Defaults to the ``backend`` configuration value, or sysfs.
    :param kwargs: passed to the backend's constructor
    :raises ContextUnavailable: the session can't be opened
    """
    if backend is None:
        backend = config_value("kmod_tools", "backend") or "sysfs"
    kwargs.setdefault("modules_dir", config_path("modules"))
    if backend == "sysfs":
        from kmod_tools.sysfs import SysfsContext

        return SysfsContext(**kwargs)
    elif backend == "drgn":
        from kmod_tools.module import DrgnContext

        return DrgnContext(**kwargs)
    raise ContextUnavailable(f"unknown backend: {backend}")
