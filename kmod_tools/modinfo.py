# Copyright (c) 2026, Oracle and/or its affiliates.
# Licensed under the Universal Permissive License v 1.0 as shown at https://oss.oracle.com/licenses/upl/
"""
Module metadata: resolving a name to module images, and normalizing their
``.modinfo`` records
"""
import contextlib
import enum
from pathlib import Path
from typing import Any
from typing import Dict
from typing import Iterable
from typing import Iterator
from typing import List
from typing import NamedTuple
from typing import Optional
from typing import Tuple
from typing import Union

from kmod_tools.context import KMOD_FILTER_BUILTIN
from kmod_tools.context import KmodContext
from kmod_tools.context import module_list
from kmod_tools.context import module_ref
from kmod_tools.context import ModuleRef
from kmod_tools.errors import AliasNotFound
from kmod_tools.errors import FilterFailed
from kmod_tools.errors import InfoUnavailable
from kmod_tools.errors import ModuleNotFound
from kmod_tools.logging import get_logger
from kmod_tools.table import print_dictionary

__all__ = (
    "ModuleMetadata",
    "ParamDescriptor",
    "RecordKind",
    "classify",
    "get_modinfo",
    "normalize",
    "print_modinfo",
    "resolve_targets",
)

log = get_logger(__name__)


class RecordKind(enum.Enum):
    """How a ``.modinfo`` record is treated by :func:`normalize`"""

    PARAM_DESCRIPTION = "parm"
    PARAM_TYPE = "parmtype"
    GENERIC = ""


def classify(key: str) -> RecordKind:
    if key == RecordKind.PARAM_DESCRIPTION.value:
        return RecordKind.PARAM_DESCRIPTION
    elif key == RecordKind.PARAM_TYPE.value:
        return RecordKind.PARAM_TYPE
    return RecordKind.GENERIC


class ParamDescriptor(NamedTuple):
    """The description and type of a module parameter"""

    description: Optional[str] = None
    """Text from the ``parm`` record, if there was one"""
    type: Optional[str] = None
    """Type from the ``parmtype`` record (e.g. ``int``, ``charp``)"""

    def to_dict(self) -> Dict[str, str]:
        ret = {}
        if self.description is not None:
            ret["description"] = self.description
        if self.type is not None:
            ret["type"] = self.type
        return ret


class ModuleMetadata(NamedTuple):
    """Normalized ``.modinfo`` of a module"""

    info: Dict[str, List[str]]
    """Values of each generic key, in the order they appeared"""
    params: Dict[str, ParamDescriptor]
    """Parameter descriptors by parameter name"""
    errors: List[InfoUnavailable]
    """Malformed records which were skipped"""

    def is_empty(self) -> bool:
        return not (self.info or self.params or self.errors)

    def to_dict(self) -> Dict[str, Any]:
        ret: Dict[str, Any] = {
            "info": {k: list(v) for k, v in self.info.items()},
            "params": {k: v.to_dict() for k, v in self.params.items()},
        }
        if self.errors:
            ret["errors"] = [e.message for e in self.errors]
        return ret


def normalize(
    records: Iterable[Tuple[str, str]], name: str = ""
) -> ModuleMetadata:
    """
    Build :class:`ModuleMetadata` from raw ``(key, value)`` records

    The ``parm`` and ``parmtype`` records have values of the form
    ``param:text``, and they are merged into a single :class:`ParamDescriptor`
    per parameter, no matter which of the two comes first. A later record of
    the same kind replaces the earlier text. All other records are collected
    in ``info``, keeping duplicates in their original order.

    A parameter record without a ``:`` is skipped, and reported in ``errors``.

    :param records: raw records, in the order the module stores them
    :param name: module name, used in error messages
    """
    info: Dict[str, List[str]] = {}
    params: Dict[str, ParamDescriptor] = {}
    errors: List[InfoUnavailable] = []
    for key, value in records:
        kind = classify(key)
        if kind is RecordKind.GENERIC:
            info.setdefault(key, []).append(value)
            continue

        param, sep, text = value.partition(":")
        if not sep:
            where = name or "module"
            err = InfoUnavailable(
                name, f"malformed {key} record in {where}: {value!r}"
            )
            log.warning("%s", err.message)
            errors.append(err)
            continue

        desc = params.get(param, ParamDescriptor())
        if kind is RecordKind.PARAM_DESCRIPTION:
            desc = desc._replace(description=text)
        else:
            desc = desc._replace(type=text)
        params[param] = desc
    return ModuleMetadata(info, params, errors)


@contextlib.contextmanager
def resolve_targets(ctx: KmodContext, name: str) -> Iterator[List[ModuleRef]]:
    """
    Find the module(s) that ``name`` refers to

    If ``name`` is a regular file, it is a module image and is used as is,
    even if a loaded module has the same name. Otherwise, it is looked up as a
    module name or alias, and built-in modules are removed from the matches.

    The handles are released when the block exits.

    :param ctx: session to use
    :param name: module image path, module name, or alias
    :raises ModuleNotFound: the file can't be used, or only built-in modules
      match
    :raises AliasNotFound: nothing matches the name
    :raises FilterFailed: built-in modules couldn't be filtered
    """
    try:
        is_image = Path(name).is_file()
    except OSError:
        # e.g. ENAMETOOLONG, such a name can only be an alias
        is_image = False
    if is_image:
        try:
            ref = ctx.module_from_path(name)
        except OSError as e:
            raise ModuleNotFound(name, "module file not found") from e
        with module_list(ctx, [ref]) as refs:
            yield refs
        return

    try:
        candidates = ctx.lookup(name)
    except (OSError, ValueError) as e:
        raise AliasNotFound(
            name, f"module alias {name} not found: {e}"
        ) from e
    with module_list(ctx, candidates):
        if not candidates:
            raise AliasNotFound(name)
        try:
            filtered = ctx.apply_filter(candidates, KMOD_FILTER_BUILTIN)
        except (OSError, ValueError) as e:
            raise FilterFailed(name) from e
    if not filtered:
        raise ModuleNotFound(name)
    with module_list(ctx, filtered) as refs:
        yield refs


def get_modinfo(ctx: KmodContext, name: str) -> ModuleMetadata:
    """
    Return the normalized metadata of a module image, module name, or alias

    When a name matches several modules, the last match wins: every candidate
    is read in turn, and each result replaces the previous one, so the outcome
    (metadata or error) is that of the final candidate.

    :raises KmodLookupError: the name can't be resolved, or the metadata of the
      last candidate can't be read
    """
    result: Union[ModuleMetadata, Exception, None] = None
    with resolve_targets(ctx, name) as refs:
        if len(refs) > 1:
            log.debug(
                "%s matches %s, using the last one",
                name,
                ", ".join(r.name for r in refs),
            )
        for entry in refs:
            with module_ref(ctx, ctx.get_module(entry)) as mod:
                modname = ctx.module_name(mod)
                try:
                    records = ctx.module_info(mod)
                except (OSError, ValueError) as e:
                    result = e
                else:
                    result = normalize(records, modname)
    if isinstance(result, Exception):
        raise InfoUnavailable(
            name, f"could not get modinfo: {name}: {result}"
        ) from result
    assert result is not None
    return result


def print_modinfo(metadata: ModuleMetadata) -> None:
    """
    Print metadata in the format of modinfo(8)

    Each generic value gets its own line. Parameters come last, as ``name:text
    (type)``.
    """
    rows = []
    for key, values in metadata.info.items():
        for value in values:
            rows.append((key, value))
    for param, desc in metadata.params.items():
        text = f"{param}:{desc.description or ''}"
        if desc.type is not None:
            text += f" ({desc.type})"
        rows.append(("parm", text))
    print_dictionary(rows)
