# Copyright (c) 2026, Oracle and/or its affiliates.
# Licensed under the Universal Permissive License v 1.0 as shown at https://oss.oracle.com/licenses/upl/
"""
Configuration support

kmod-tools works without any configuration. The files below may relocate the
kernel interfaces it reads (useful for containers with the host's /sys and
/proc mounted elsewhere) and pick the default backend.

.. code-block:: ini

    [kmod_tools]
    backend = sysfs

    [paths]
    sysfs = /sys
    procfs = /proc
    modules = /lib/modules
    release = 6.12.0-1.el9.x86_64
"""
import configparser
from functools import lru_cache
from pathlib import Path
from typing import Optional

__all__ = ("get_config", "config_path", "config_value")


CONFIG_PATHS = [
    Path("/etc/kmod_tools.ini"),
    Path.home() / ".config/kmod_tools.ini",
]

DEFAULT_PATHS = {
    "sysfs": "/sys",
    "procfs": "/proc",
    "modules": "/lib/modules",
}


@lru_cache(maxsize=1)
def get_config() -> configparser.ConfigParser:
    """
    Return kmod-tools configuration information
    """
    config = configparser.ConfigParser()
    config.read(CONFIG_PATHS)
    return config


def config_value(section: str, key: str) -> Optional[str]:
    """Return a configured value, or None when it is not set"""
    return get_config().get(section, key, fallback=None)


def config_path(key: str) -> Path:
    """Return one of the configured filesystem roots from ``[paths]``"""
    return Path(config_value("paths", key) or DEFAULT_PATHS[key])
