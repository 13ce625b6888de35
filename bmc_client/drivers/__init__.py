"""
Driver adapters.

Each module exposes a driver class, its FEATURES set and a ``new_driver(cfg,
session_manager, logger)`` factory returning a DriverDescriptor.
DEFAULT_DRIVER_FACTORIES lists them in default fallback order.
"""

from . import idrac8, ipmitool, racadm, redfish

DEFAULT_DRIVER_FACTORIES = (
    ipmitool.new_driver,
    racadm.new_driver,
    idrac8.new_driver,
    redfish.new_driver,
)

__all__ = ["DEFAULT_DRIVER_FACTORIES", "idrac8", "ipmitool", "racadm", "redfish"]
