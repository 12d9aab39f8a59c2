# Copyright (c) 2026, Oracle and/or its affiliates.
# Licensed under the Universal Permissive License v 1.0 as shown at https://oss.oracle.com/licenses/upl/
"""
The kmod-tools CLI entry point.

Two commands are provided, which mirror their kmod counterparts:

- ``kmod-tools lsmod``: list loaded modules, optionally with their metadata
- ``kmod-tools modinfo NAME``: show the metadata of a module name, alias or
  module image
"""
import argparse
import json
import logging
import sys
from typing import Any
from typing import Dict
from typing import List
from typing import Optional

from kmod_tools.context import open_context
from kmod_tools.errors import KmodError
from kmod_tools.lsmod import list_modules
from kmod_tools.lsmod import print_module_summary
from kmod_tools.lsmod import print_modules_json
from kmod_tools.modinfo import get_modinfo
from kmod_tools.modinfo import print_modinfo

try:
    from kmod_tools._version import __version__
except ImportError:
    __version__ = "UNKNOWN"  # uncommon, but guard against it


def _context_args(args: argparse.Namespace) -> Dict[str, Any]:
    kwargs: Dict[str, Any] = {}
    if args.backend:
        kwargs["backend"] = args.backend
    if args.vmcore:
        kwargs["backend"] = "drgn"
        kwargs["vmcore"] = args.vmcore
    if args.release:
        kwargs["release"] = args.release
    return kwargs


def cmd_lsmod(args: argparse.Namespace) -> None:
    records = list_modules(with_info=args.info, **_context_args(args))
    if args.json:
        print_modules_json(records)
    else:
        print_module_summary(records)


def cmd_modinfo(args: argparse.Namespace) -> None:
    with open_context(**_context_args(args)) as ctx:
        metadata = get_modinfo(ctx, args.name)
    if args.json:
        print(json.dumps(metadata.to_dict(), indent=2))
    else:
        print_modinfo(metadata)


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(
        description="introspect loaded kernel modules"
    )
    parser.add_argument(
        "--version", action="version", version=f"kmod-tools {__version__}"
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="enable debug logging"
    )
    parser.add_argument(
        "--backend",
        choices=["sysfs", "drgn"],
        help="how to read the kernel's module state (default: sysfs)",
    )
    parser.add_argument(
        "--vmcore",
        help="read modules from a vmcore instead of the running kernel "
        "(implies --backend drgn)",
    )
    parser.add_argument(
        "--release",
        help="kernel release whose module directory is used for metadata",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    lsmod = subparsers.add_parser("lsmod", help="list loaded modules")
    lsmod.add_argument(
        "--info",
        "-i",
        action="store_true",
        help="include the metadata of each module",
    )
    lsmod.add_argument("--json", action="store_true", help="output JSON")
    lsmod.set_defaults(func=cmd_lsmod)

    modinfo = subparsers.add_parser(
        "modinfo", help="show the metadata of a module"
    )
    modinfo.add_argument("name", help="module name, alias, or .ko file")
    modinfo.add_argument("--json", action="store_true", help="output JSON")
    modinfo.set_defaults(func=cmd_modinfo)

    args = parser.parse_args(argv)
    if args.vmcore and args.backend == "sysfs":
        parser.error("--vmcore can only be used with --backend drgn")

    logging.basicConfig(
        format="%(levelname)s: %(name)s: %(message)s",
        level=logging.DEBUG if args.verbose else logging.WARNING,
    )

    try:
        args.func(args)
    except KmodError as e:
        sys.exit(f"error: {e.message}")


if __name__ == "__main__":
    main()
