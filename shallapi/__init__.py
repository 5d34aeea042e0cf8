"""Async Python client for the SHALL LED controller."""

from .exceptions import (
    LoadError,
    MalformedResponse,
    NetworkUnreachable,
    RequestTimeout,
    ShallError,
    UnexpectedServerValue,
)
from .model import (
    ColorValue,
    Confirmed,
    DeviceSnapshot,
    Failed,
    Field,
    FieldState,
    FieldStatus,
    LedMode,
)
from .resolver import DEFAULT_ADDRESS, AddressResolver, DeviceConfig
from .session import DeviceSession
from .transport import Transport

__version__ = "0.1.0"

__all__ = [
    "AddressResolver",
    "ColorValue",
    "Confirmed",
    "DEFAULT_ADDRESS",
    "DeviceConfig",
    "DeviceSession",
    "DeviceSnapshot",
    "Failed",
    "Field",
    "FieldState",
    "FieldStatus",
    "LedMode",
    "LoadError",
    "MalformedResponse",
    "NetworkUnreachable",
    "RequestTimeout",
    "ShallError",
    "Transport",
    "UnexpectedServerValue",
]
