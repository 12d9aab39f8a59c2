# Copyright (c) 2026, Oracle and/or its affiliates.
# Licensed under the Universal Permissive License v 1.0 as shown at https://oss.oracle.com/licenses/upl/
"""
Kernel module sessions for the running kernel, backed by /proc and /sys

This reads the same kernel interfaces as libkmod:

- ``/proc/modules`` for the list of loaded modules (most recently loaded
  first) and their sizes
- ``/sys/module/<name>/refcnt`` for reference counts
- ``/sys/module/<name>/holders/`` for the modules holding a reference
"""
import os
from functools import cached_property
from pathlib import Path
from typing import Dict
from typing import List
from typing import NamedTuple
from typing import Optional

from kmod_tools.config import config_path
from kmod_tools.config import config_value
from kmod_tools.context import KmodContext
from kmod_tools.errors import ContextUnavailable
from kmod_tools.logging import get_logger

__all__ = ("ProcModulesEntry", "SysfsContext", "parse_proc_modules")

log = get_logger(__name__)


class ProcModulesEntry(NamedTuple):
    """One line of ``/proc/modules``"""

    name: str
    size: int
    refcnt: int
    """The "used" column, which is 0 for modules without unload support"""
    used_by: List[str]
    state: str


def parse_proc_modules(text: str) -> List[ProcModulesEntry]:
    """
    Parse the contents of ``/proc/modules``

    Each line has the form::

        name size refcnt holder1,holder2, state address [taints]

    The holder column is ``-`` when there are no holders, and may contain
    markers like ``[permanent]``, which are not module names.
    """
    entries = []
    for line in text.splitlines():
        fields = line.split()
        if len(fields) < 5:
            continue
        used_by = [
            h
            for h in fields[3].split(",")
            if h and h != "-" and not h.startswith("[")
        ]
        refcnt = int(fields[2]) if fields[2].isdigit() else 0
        entries.append(
            ProcModulesEntry(
                fields[0], int(fields[1]), refcnt, used_by, fields[4]
            )
        )
    return entries


class SysfsContext(KmodContext):
    """
    Session with the running kernel through procfs and sysfs

    :param sysfs: sysfs mount point (default: configured, or ``/sys``)
    :param procfs: procfs mount point (default: configured, or ``/proc``)
    :param modules_dir: directory holding the module trees of each release
    :param release: kernel release (default: configured, or ``uname -r``)
    :raises ContextUnavailable: ``/proc/modules`` is not readable
    """

    def __init__(
        self,
        sysfs: Optional[Path] = None,
        procfs: Optional[Path] = None,
        modules_dir: Optional[Path] = None,
        release: Optional[str] = None,
    ):
        self.sysfs = Path(sysfs or config_path("sysfs"))
        self.procfs = Path(procfs or config_path("procfs"))
        proc_modules = self.procfs / "modules"
        if not os.access(proc_modules, os.R_OK):
            raise ContextUnavailable(
                f"could not obtain kmod context: cannot read {proc_modules}"
            )
        if release is None:
            release = config_value("paths", "release") or os.uname().release
        super().__init__(modules_dir or config_path("modules"), release)

    def __repr__(self) -> str:
        return f"SysfsContext({str(self.procfs)!r}, {str(self.sysfs)!r})"

    @cached_property
    def _proc_modules(self) -> Dict[str, ProcModulesEntry]:
        text = (self.procfs / "modules").read_text()
        return {e.name: e for e in parse_proc_modules(text)}

    def _entry(self, name: str) -> ProcModulesEntry:
        try:
            return self._proc_modules[name]
        except KeyError:
            raise LookupError(f"module {name} is not loaded") from None

    def _loaded_names(self) -> List[str]:
        # Re-read the file for each listing, modules come and go.
        self.__dict__.pop("_proc_modules", None)
        return list(self._proc_modules)

    def _module_size(self, name: str) -> int:
        return self._entry(name).size

    def _module_refcnt(self, name: str) -> int:
        path = self.sysfs / "module" / name / "refcnt"
        try:
            return int(path.read_text().strip())
        except FileNotFoundError:
            return self._entry(name).refcnt
        except ValueError:
            log.warning("bad value in %s, using /proc/modules", path)
            return self._entry(name).refcnt

    def _holder_names(self, name: str) -> List[str]:
        holders = self.sysfs / "module" / name / "holders"
        try:
            # kernfs lists directory entries in hash order, sort them so the
            # output is stable.
            return sorted(os.listdir(holders))
        except FileNotFoundError:
            log.debug("no holders directory for %s, using /proc/modules", name)
            return list(self._entry(name).used_by)
