# Copyright (c) 2026, Oracle and/or its affiliates.
# Licensed under the Universal Permissive License v 1.0 as shown at https://oss.oracle.com/licenses/upl/
"""
Read the ``.modinfo`` section of kernel module images
"""
import gzip
import io
import lzma
from pathlib import Path
from typing import BinaryIO
from typing import List
from typing import Tuple
from typing import Union

import zstandard
from elftools.common.exceptions import ELFError
from elftools.elf.elffile import ELFFile

__all__ = (
    "MODULE_SUFFIXES",
    "module_image_bytes",
    "parse_modinfo",
    "read_modinfo",
    "strip_module_suffix",
)

MODULE_SUFFIXES = (".ko", ".ko.xz", ".ko.gz", ".ko.zst")


def strip_module_suffix(filename: str) -> str:
    """
    Return the module name for a file name like ``nf_nat.ko.xz``

    Dashes are converted to underscores, the same way the kernel names modules.
    """
    for suffix in MODULE_SUFFIXES:
        if filename.endswith(suffix):
            filename = filename[: -len(suffix)]
            break
    return filename.replace("-", "_")


def _decompress(f: BinaryIO, name: str) -> bytes:
    if name.endswith(".xz"):
        return lzma.decompress(f.read())
    elif name.endswith(".gz"):
        return gzip.decompress(f.read())
    elif name.endswith(".zst"):
        # Frames written by kmod's install scripts don't always record their
        # content size, so use the streaming reader.
        with zstandard.ZstdDecompressor().stream_reader(f) as reader:
            return reader.read()
    return f.read()


def module_image_bytes(path: Union[str, Path]) -> bytes:
    """
    Return the uncompressed ELF contents of a module image

    :param path: path to a ``.ko`` file, optionally xz, gzip or zstd compressed
    """
    path = Path(path)
    with path.open("rb") as f:
        try:
            return _decompress(f, path.name)
        except (lzma.LZMAError, zstandard.ZstdError, EOFError) as e:
            raise ValueError(f"{path}: cannot decompress: {e}") from e


def parse_modinfo(data: bytes) -> List[Tuple[str, str]]:
    """
    Split raw ``.modinfo`` contents into ``(key, value)`` records

    The section is a sequence of NUL-terminated ``key=value`` strings, padded
    with extra NUL bytes. Records are returned in section order. A string
    without ``=`` is returned as a key with an empty value.
    """
    records = []
    for entry in data.split(b"\0"):
        if not entry:
            continue
        key, _, value = entry.decode("utf-8", errors="replace").partition("=")
        records.append((key, value))
    return records


def read_modinfo(path: Union[str, Path]) -> List[Tuple[str, str]]:
    """
    Return the ``.modinfo`` records of a kernel module image

    :param path: path to the module image
    :raises OSError: the file cannot be read
    :raises ValueError: the file cannot be decompressed, is not ELF, or has no
      ``.modinfo`` section
    """
    data = module_image_bytes(path)
    try:
        elf = ELFFile(io.BytesIO(data))
        section = elf.get_section_by_name(".modinfo")
    except ELFError as e:
        raise ValueError(f"{path}: not a valid ELF file: {e}") from e
    if section is None:
        raise ValueError(f"{path}: no .modinfo section")
    return parse_modinfo(section.data())
