# Copyright (c) 2026, Oracle and/or its affiliates.
# Licensed under the Universal Permissive License v 1.0 as shown at https://oss.oracle.com/licenses/upl/
"""
Exceptions raised while introspecting kernel modules

Two families exist. Fatal errors (:class:`ContextUnavailable`,
:class:`EnumerationFailed`) abort a whole listing. Lookup errors (subclasses of
:class:`KmodLookupError`) concern a single module name, and a listing attaches
them to the affected record instead of stopping.
"""

__all__ = (
    "KmodError",
    "ContextUnavailable",
    "EnumerationFailed",
    "KmodLookupError",
    "ModuleNotFound",
    "AliasNotFound",
    "FilterFailed",
    "InfoUnavailable",
)


class KmodError(Exception):
    """Base class for kernel module introspection errors"""

    message: str

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ContextUnavailable(KmodError):
    """The kernel module subsystem could not be opened"""


class EnumerationFailed(KmodError):
    """The list of loaded modules could not be retrieved"""


class KmodLookupError(KmodError):
    """Base class for errors looking up a single module"""

    name: str

    def __init__(self, name: str, message: str):
        super().__init__(message)
        self.name = name

    @property
    def kind(self) -> str:
        return type(self).__name__


class ModuleNotFound(KmodLookupError):
    """No usable module matches the name"""

    def __init__(self, name: str, message: str = ""):
        super().__init__(name, message or f"module {name} not found")


class AliasNotFound(KmodLookupError):
    """Alias resolution produced no candidate module"""

    def __init__(self, name: str, message: str = ""):
        super().__init__(name, message or f"module alias {name} not found")


class FilterFailed(KmodLookupError):
    """Removing built-in modules from the candidates failed"""

    def __init__(self, name: str, message: str = ""):
        super().__init__(name, message or "failed to filter list")


class InfoUnavailable(KmodLookupError):
    """Metadata could not be read, or a metadata record is malformed"""

    def __init__(self, name: str, message: str = ""):
        super().__init__(name, message or f"could not get modinfo: {name}")
