# Copyright (c) 2026, Oracle and/or its affiliates.
# Licensed under the Universal Permissive License v 1.0 as shown at https://oss.oracle.com/licenses/upl/
"""
Parsers for the depmod index files in ``/lib/modules/<release>``

These are the text indexes written by depmod(8): ``modules.dep``,
``modules.alias``, ``modules.builtin`` and ``modules.builtin.modinfo``. They
let us map a module name or alias to a module image without asking the kernel.
"""
from fnmatch import fnmatchcase
from functools import cached_property
from pathlib import Path
from typing import Dict
from typing import List
from typing import Optional
from typing import Tuple

from kmod_tools.elf import parse_modinfo
from kmod_tools.elf import strip_module_suffix
from kmod_tools.logging import get_logger

__all__ = ("ModuleIndex", "normalize_name")

log = get_logger(__name__)


def normalize_name(name: str) -> str:
    """
    Convert dashes to underscores, except within fnmatch brackets

    Both the kernel and depmod store names with underscores, but users may type
    either. Bracket expressions in aliases (e.g. ``[0-9]``) are kept intact.
    """
    out = []
    depth = 0
    for c in name:
        if c == "[":
            depth += 1
        elif c == "]" and depth:
            depth -= 1
        elif c == "-" and not depth:
            c = "_"
        out.append(c)
    return "".join(out)


class ModuleIndex:
    """
    Lazily parsed view of one kernel release's module directory

    Missing index files are treated as empty: a kernel without modules.alias
    simply has no aliases.

    :param root: the ``/lib/modules/<release>`` directory
    """

    def __init__(self, root: Path):
        self.root = Path(root)

    def __repr__(self) -> str:
        return f"ModuleIndex({str(self.root)!r})"

    def _read_lines(self, filename: str) -> List[str]:
        path = self.root / filename
        try:
            with path.open() as f:
                return f.read().splitlines()
        except FileNotFoundError:
            log.debug("index file %s does not exist", path)
            return []
        except UnicodeDecodeError as e:
            raise ValueError(f"{path}: {e}") from e

    @cached_property
    def deps(self) -> Dict[str, Path]:
        """Map module name to the absolute path of its image"""
        ret = {}
        for line in self._read_lines("modules.dep"):
            relpath, sep, _ = line.partition(":")
            if not sep:
                continue
            path = Path(relpath)
            if not path.is_absolute():
                path = self.root / path
            ret.setdefault(strip_module_suffix(path.name), path)
        return ret

    @cached_property
    def aliases(self) -> List[Tuple[str, str]]:
        """List of ``(pattern, module name)`` pairs, in file order"""
        ret = []
        for line in self._read_lines("modules.alias"):
            fields = line.split()
            if len(fields) != 3 or fields[0] != "alias":
                continue
            ret.append(
                (normalize_name(fields[1]), normalize_name(fields[2]))
            )
        return ret

    @cached_property
    def builtin(self) -> Dict[str, str]:
        """Map built-in module name to its path within the kernel tree"""
        ret = {}
        for line in self._read_lines("modules.builtin"):
            line = line.strip()
            if line:
                ret[strip_module_suffix(Path(line).name)] = line
        return ret

    @cached_property
    def _builtin_modinfo(self) -> Dict[str, List[Tuple[str, str]]]:
        ret: Dict[str, List[Tuple[str, str]]] = {}
        try:
            data = (self.root / "modules.builtin.modinfo").read_bytes()
        except FileNotFoundError:
            return ret
        for key, value in parse_modinfo(data):
            modname, sep, key = key.partition(".")
            if sep:
                ret.setdefault(modname, []).append((key, value))
        return ret

    def module_path(self, name: str) -> Optional[Path]:
        """Return the image path of a module, or None if it isn't indexed"""
        return self.deps.get(normalize_name(name))

    def is_builtin(self, name: str) -> bool:
        return normalize_name(name) in self.builtin

    def builtin_modinfo(self, name: str) -> Optional[List[Tuple[str, str]]]:
        """
        Return the ``.modinfo`` records of a built-in module

        :returns: the records, or None if the kernel build recorded none
        """
        return self._builtin_modinfo.get(normalize_name(name))

    def lookup(self, name: str) -> List[str]:
        """
        Return the names of modules matching a module name or alias

        An exact module name wins, then a built-in module name, and finally
        every module with a matching alias, in ``modules.alias`` order.

        :param name: module name or alias
        :returns: module names, possibly empty
        """
        name = normalize_name(name)
        if name in self.deps or name in self.builtin:
            return [name]
        ret: List[str] = []
        for pattern, modname in self.aliases:
            if modname not in ret and fnmatchcase(name, pattern):
                ret.append(modname)
        return ret
