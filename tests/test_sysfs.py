# Copyright (c) 2026, Oracle and/or its affiliates.
# Licensed under the Universal Permissive License v 1.0 as shown at https://oss.oracle.com/licenses/upl/
import logging

import pytest

from kmod_tools.context import module_list
from kmod_tools.errors import AliasNotFound
from kmod_tools.errors import ContextUnavailable
from kmod_tools.errors import EnumerationFailed
from kmod_tools.errors import InfoUnavailable
from kmod_tools.lsmod import holder_names
from kmod_tools.lsmod import list_modules
from kmod_tools.sysfs import parse_proc_modules
from kmod_tools.sysfs import ProcModulesEntry
from kmod_tools.sysfs import SysfsContext


PROC_MODULES = """\
nft_chain_nat 16384 3 - Live 0xffffffffc0b3e000
nf_nat 61440 2 xt_nat,nft_chain_nat, Live 0xffffffffc0b1d000
ipv6 589824 30 [permanent], Live 0xffffffffc0a00000
vboxdrv 696320 -2 - Loading 0xffffffffc0900000 (OE)
short line
"""


def test_parse_proc_modules():
    assert parse_proc_modules(PROC_MODULES) == [
        ProcModulesEntry("nft_chain_nat", 16384, 3, [], "Live"),
        ProcModulesEntry(
            "nf_nat", 61440, 2, ["xt_nat", "nft_chain_nat"], "Live"
        ),
        ProcModulesEntry("ipv6", 589824, 30, [], "Live"),
        ProcModulesEntry("vboxdrv", 696320, 0, [], "Loading"),
    ]


def test_sysfs_context(fake_system):
    with SysfsContext(**fake_system.kwargs()) as ctx:
        with module_list(ctx, ctx.loaded_modules()) as entries:
            assert [ctx.module_name(e) for e in entries] == ["bar", "foo"]
            bar, foo = entries
            assert ctx.module_size(foo) == 12288
            assert ctx.module_refcnt(foo) == 1
            assert ctx.module_refcnt(bar) == 0
            with module_list(ctx, ctx.module_holders(foo)) as holders:
                assert holder_names(ctx, holders) == ["bar"]
            with module_list(ctx, ctx.module_holders(bar)) as holders:
                assert holders == []
        assert ctx.outstanding == 0


def test_sysfs_falls_back_to_proc(fake_system):
    for name in ("foo", "bar"):
        moddir = fake_system.sysfs / "module" / name
        (moddir / "refcnt").unlink()
        for holder in (moddir / "holders").iterdir():
            holder.rmdir()
        (moddir / "holders").rmdir()
    with SysfsContext(**fake_system.kwargs()) as ctx:
        with module_list(ctx, ctx.loaded_modules()) as (bar, foo):
            assert ctx.module_refcnt(foo) == 1
            with module_list(ctx, ctx.module_holders(foo)) as holders:
                assert holder_names(ctx, holders) == ["bar"]


def test_sysfs_unreadable(fake_system):
    (fake_system.procfs / "modules").unlink()
    with pytest.raises(ContextUnavailable):
        SysfsContext(**fake_system.kwargs())


def test_sysfs_list_modules(fake_system):
    records = list_modules(with_info=True, **fake_system.kwargs())
    assert [r.name for r in records] == ["bar", "foo"]
    bar, foo = records

    assert foo.use_count == 1
    assert foo.holders == ["bar"]
    assert foo.error is None
    assert foo.info.info["description"] == ["built-in networking driver"]
    assert foo.info.info["license"] == ["GPL"]
    assert foo.to_dict()["info"]["params"] == {
        "debug": {"description": "enable verbose logs", "type": "bool"}
    }

    # modules.dep lists bar, but its image is gone
    assert bar.info is None
    assert isinstance(bar.error, InfoUnavailable)
    assert bar.to_dict()["error"]["kind"] == "InfoUnavailable"


def test_sysfs_lookup_filters_builtin(fake_system):
    with SysfsContext(**fake_system.kwargs()) as ctx:
        with module_list(ctx, ctx.lookup("crc32c-generic")) as refs:
            assert [r.builtin for r in refs] == [True]
            assert ctx.apply_filter(refs, 2) == []
        with module_list(ctx, ctx.lookup("net-pf-99")) as refs:
            assert [r.name for r in refs] == ["foo"]
            assert refs[0].path == (
                fake_system.release_dir / "kernel/drivers/net/foo.ko"
            )


@pytest.mark.parametrize("damage", ["undecodable", "directory"])
def test_sysfs_broken_index(fake_system, damage):
    dep = fake_system.release_dir / "modules.dep"
    dep.unlink()
    if damage == "directory":
        dep.mkdir()
    else:
        dep.write_bytes(b"kernel/drivers/net/foo\xff.ko:\n")

    # Listing doesn't need the index
    records = list_modules(**fake_system.kwargs())
    assert [r.to_dict() for r in records] == [
        {"name": "bar", "size": 4096, "useCount": 0},
        {"name": "foo", "size": 12288, "useCount": 1, "holders": ["bar"]},
    ]

    records = list_modules(with_info=True, **fake_system.kwargs())
    assert [r.name for r in records] == ["bar", "foo"]
    for record in records:
        assert record.info is None
        assert isinstance(record.error, AliasNotFound)
        assert "modules.dep" in record.error.message


def test_sysfs_bad_refcnt(fake_system, caplog):
    (fake_system.sysfs / "module" / "foo" / "refcnt").write_text("garbage\n")
    with caplog.at_level(logging.WARNING, logger="kmod_tools.sysfs"):
        records = list_modules(**fake_system.kwargs())
    assert [(r.name, r.use_count) for r in records] == [("bar", 0), ("foo", 1)]
    assert "bad value" in caplog.text


def test_sysfs_bad_proc_modules(fake_system):
    (fake_system.procfs / "modules").write_text("foo lots 0 - Live 0x0\n")
    with pytest.raises(EnumerationFailed):
        list_modules(**fake_system.kwargs())
