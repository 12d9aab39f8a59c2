# Copyright (c) 2026, Oracle and/or its affiliates.
# Licensed under the Universal Permissive License v 1.0 as shown at https://oss.oracle.com/licenses/upl/
"""
Build tiny ELF files which look enough like kernel modules for our readers
"""
import struct
from typing import Iterable
from typing import Tuple


def build_elf(modinfo: bytes, section: str = ".modinfo") -> bytes:
    """
    Return a minimal relocatable x86_64 ELF file with one data section
    """
    shstrtab = b"\0" + section.encode() + b"\0.shstrtab\0"
    data_off = 64
    shstrtab_off = data_off + len(modinfo)
    shoff = shstrtab_off + len(shstrtab)
    shoff += (-shoff) % 8

    ident = b"\x7fELF" + bytes([2, 1, 1, 0]) + bytes(8)
    header = ident + struct.pack(
        "<HHIQQQIHHHHHH", 1, 62, 1, 0, 0, shoff, 0, 64, 0, 0, 64, 3, 2
    )

    def shdr(name: int, type_: int, offset: int, size: int) -> bytes:
        return struct.pack(
            "<IIQQQQIIQQ", name, type_, 0, 0, offset, size, 0, 0, 1, 0
        )

    body = modinfo + shstrtab
    padding = bytes(shoff - data_off - len(body))
    sections = (
        bytes(64)
        + shdr(1, 1, data_off, len(modinfo))
        + shdr(len(section) + 2, 3, shstrtab_off, len(shstrtab))
    )
    return header + body + padding + sections


def modinfo_bytes(records: Iterable[Tuple[str, str]]) -> bytes:
    return b"".join(f"{k}={v}".encode() + b"\0" for k, v in records)
