# Copyright (c) 2026, Oracle and/or its affiliates.
# Licensed under the Universal Permissive License v 1.0 as shown at https://oss.oracle.com/licenses/upl/
"""
Loggers which tag messages with the kernel module being processed
"""
import contextlib
import logging
import typing as t


class ModuleLoggerAdapter(logging.LoggerAdapter):
    """
    Prefix messages with ``[module=NAME]`` while inside :meth:`module`

    Per-module warnings from a listing are otherwise hard to attribute, since
    the underlying error messages often only name a file.
    """

    _modules: t.List[str]

    def __init__(self, logger: logging.Logger):
        super().__init__(logger, {})
        self._modules = []

    @contextlib.contextmanager
    def module(self, name: str) -> t.Iterator[None]:
        self._modules.append(name)
        try:
            yield
        finally:
            self._modules.pop()

    def process(
        self, message: str, kwargs: t.MutableMapping[str, t.Any]
    ) -> t.Tuple[str, t.MutableMapping[str, t.Any]]:
        if self._modules:
            message = f"[module={self._modules[-1]}] {message}"
        return message, kwargs


def get_logger(name: str) -> ModuleLoggerAdapter:
    return ModuleLoggerAdapter(logging.getLogger(name))


class FilterMissingDebugSymbolsMessages(logging.Filter):
    """
    Drop drgn's reports of missing debuginfo for individual kernel modules

    Listing modules only needs the types of ``struct module`` from vmlinux.
    """

    def filter(self, rec: logging.LogRecord) -> bool:
        # drgn's C code logs with "%s" and the whole text as the argument.
        # Check the format first, so other records are never formatted here.
        if rec.msg != "%s":
            return True
        msg = rec.getMessage()
        return not (
            msg.startswith("missing debugging symbols for")
            or msg.startswith("... missing ")
        )
