"""Resolving a driver from its name."""

from __future__ import annotations

from .command import CommandDriver
from .debug import DebugDriver
from .docker import DockerDriver
from .driver import Driver, DriverError


def lookup(name: str) -> Driver:
    """Return the driver named ``name``.

    Built-in drivers are matched first; any other name is resolved to a
    ``cnab-NAME`` executable on PATH.
    """
    if name == "docker":
        return DockerDriver()
    if name == "debug":
        return DebugDriver()
    command_driver = CommandDriver(name)
    if command_driver.check_driver_exists():
        return command_driver
    raise DriverError(f"unsupported driver or driver not found in PATH: {name}")