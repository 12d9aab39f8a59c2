# Copyright (c) 2026, Oracle and/or its affiliates.
# Licensed under the Universal Permissive License v 1.0 as shown at https://oss.oracle.com/licenses/upl/
"""
List loaded kernel modules, their holders and (optionally) their metadata
"""
import json
from typing import Any
from typing import Callable
from typing import Dict
from typing import List
from typing import NamedTuple
from typing import Optional

from kmod_tools.context import KmodContext
from kmod_tools.context import module_list
from kmod_tools.context import module_ref
from kmod_tools.context import ModuleRef
from kmod_tools.context import open_context
from kmod_tools.errors import EnumerationFailed
from kmod_tools.errors import KmodLookupError
from kmod_tools.logging import get_logger
from kmod_tools.modinfo import get_modinfo
from kmod_tools.modinfo import ModuleMetadata
from kmod_tools.table import Table

__all__ = (
    "ModuleRecord",
    "holder_names",
    "list_modules",
    "print_module_summary",
    "print_modules_json",
)

log = get_logger(__name__)


class ModuleRecord(NamedTuple):
    """Describes a loaded kernel module"""

    name: str
    size: int
    """Memory used by the module, in bytes"""
    use_count: int
    holders: List[str]
    """Names of the modules holding a reference to this one"""
    info: Optional[ModuleMetadata] = None
    """Metadata, when it was requested and could be read"""
    error: Optional[KmodLookupError] = None
    """Why the metadata could not be read"""

    def to_dict(self) -> Dict[str, Any]:
        """
        Return a JSON-friendly dict. Empty holders, and metadata which is
        missing or empty, are omitted.
        """
        ret: Dict[str, Any] = {
            "name": self.name,
            "size": self.size,
            "useCount": self.use_count,
        }
        if self.holders:
            ret["holders"] = list(self.holders)
        if self.info is not None and not self.info.is_empty():
            ret["info"] = self.info.to_dict()
        if self.error is not None:
            ret["error"] = {
                "kind": self.error.kind,
                "message": self.error.message,
            }
        return ret


def holder_names(ctx: KmodContext, holders: List[ModuleRef]) -> List[str]:
    """
    Return the names of the modules in a holder list, in list order

    Each entry's module handle is released once its name is read. The list
    itself belongs to the caller.
    """
    names = []
    for entry in holders:
        with module_ref(ctx, ctx.get_module(entry)) as holder:
            names.append(ctx.module_name(holder))
    return names


def _module_record(
    ctx: KmodContext, mod: ModuleRef, with_info: bool
) -> ModuleRecord:
    name = ctx.module_name(mod)
    with log.module(name):
        size = ctx.module_size(mod)
        use_count = ctx.module_refcnt(mod)
        with module_list(ctx, ctx.module_holders(mod)) as holder_list:
            holders = holder_names(ctx, holder_list)

        info = None
        error = None
        if with_info:
            try:
                info = get_modinfo(ctx, name)
            except KmodLookupError as e:
                log.warning("%s", e.message)
                error = e
    return ModuleRecord(name, size, use_count, holders, info, error)


def list_modules(
    with_info: bool = False,
    ctx_factory: Callable[..., KmodContext] = open_context,
    **kwargs: Any,
) -> List[ModuleRecord]:
    """
    Return a record for each loaded module, in the order the kernel lists them

    Failing to read a module's metadata doesn't stop the listing: the record
    is returned without ``info``, and the reason is in its ``error`` field.

    :param with_info: also read each module's ``.modinfo``
    :param ctx_factory: opens the session (default :func:`open_context`)
    :param kwargs: passed to ``ctx_factory``
    :raises ContextUnavailable: the session couldn't be opened
    :raises EnumerationFailed: the loaded modules couldn't be listed
    """
    with ctx_factory(**kwargs) as ctx:
        try:
            entries = ctx.loaded_modules()
        except (OSError, LookupError, ValueError) as e:
            raise EnumerationFailed(
                f"could not get list of modules: {e}"
            ) from e
        records = []
        with module_list(ctx, entries):
            for entry in entries:
                try:
                    with module_ref(ctx, ctx.get_module(entry)) as mod:
                        records.append(_module_record(ctx, mod, with_info))
                except (OSError, LookupError, ValueError) as e:
                    raise EnumerationFailed(
                        f"could not read module {entry.name}: {e}"
                    ) from e
        return records


def print_module_summary(records: List[ModuleRecord]) -> None:
    """Print modules in the format of lsmod(8)"""
    table = Table(["Module", "Size:>", "Used by"])
    for rec in records:
        used_by = f"{rec.use_count} {','.join(rec.holders)}".rstrip()
        table.row(rec.name, rec.size, used_by)
    table.write()


def print_modules_json(records: List[ModuleRecord]) -> None:
    print(json.dumps([rec.to_dict() for rec in records], indent=2))
