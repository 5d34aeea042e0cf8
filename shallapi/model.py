"""Data classes for the SHALL LED controller."""

from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field as dc_field
from enum import Enum
from typing import Any, Callable, Dict, Generic, Mapping, Optional, TypeVar, Union

from .exceptions import ShallError

T = TypeVar("T")

BRIGHTNESS_RANGE = (0, 255)
HUE_RANGE = (0, 359)
SATURATION_RANGE = (0, 255)

# Status schemas, keyed by API version
STATUS_SCHEMA_V2: Dict[str, type] = {
    "power": bool,
    "brightness": int,
    "hue": int,
    "saturation": int,
    "mode": str,
}
STATUS_SCHEMA_V1: Dict[str, type] = {
    "power": bool,
    "brightness": int,
    "hue": int,
    "saturation": int,
    "adaptive_mode": bool,
}


class LedMode(str, Enum):
    """Operating modes understood by the device."""

    MANUAL = "manual"
    ADAPTIVE = "adaptive"
    ENVIRONMENTAL = "environmental"


class Field(str, Enum):
    """Device attributes with their own synchronization channel."""

    POWER = "power"
    BRIGHTNESS = "brightness"
    COLOR = "color"
    MODE = "mode"


# Submission order used by batch applies and status summaries
FIELD_ORDER = (Field.POWER, Field.BRIGHTNESS, Field.COLOR, Field.MODE)


@dataclass(slots=True, frozen=True)
class ColorValue:
    """Hue/saturation pair, always confirmed together."""

    hue: int
    saturation: int


@dataclass(slots=True)
class DeviceSnapshot:
    """Client-side mirror of the state confirmed by the device.

    A fresh snapshot is empty; every field is None until a status load
    or a channel confirmation fills it in.
    """

    power: Optional[bool] = None
    brightness: Optional[int] = None
    hue: Optional[int] = None
    saturation: Optional[int] = None
    mode: Optional[LedMode] = None

    # True when `mode` is MANUAL only because the device sent an unknown string
    mode_fallback: bool = False
    raw_mode: Optional[str] = None
    api_version: Optional[int] = None

    @property
    def loaded(self) -> bool:
        return None not in (
            self.power,
            self.brightness,
            self.hue,
            self.saturation,
            self.mode,
        )

    @property
    def color(self) -> Optional[ColorValue]:
        if self.hue is None or self.saturation is None:
            return None
        return ColorValue(self.hue, self.saturation)

    def value_of(self, field: Field) -> Any:
        """Return the confirmed value for one channel's field."""
        if field is Field.COLOR:
            return self.color
        return getattr(self, field.value)


@dataclass(slots=True, frozen=True)
class Confirmed(Generic[T]):
    """The device accepted a submit; `value` is what it echoed back.

    `normalized_from` holds the raw echoed value when the client had to
    map an unknown value onto a default.
    """

    field: Field
    value: T
    normalized_from: Optional[str] = None

    @property
    def ok(self) -> bool:
        return True


@dataclass(slots=True, frozen=True)
class Failed:
    """A submit that left the field untouched."""

    field: Field
    reason: str
    error: Optional[ShallError] = dc_field(default=None, compare=False)

    @property
    def ok(self) -> bool:
        return False


FieldResult = Union[Confirmed[Any], Failed]


@dataclass(slots=True, frozen=True)
class TransportResult:
    """Outcome of one HTTP round trip: decoded JSON or the error it hit."""

    data: Optional[Mapping[str, Any]] = None
    error: Optional[ShallError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class FieldStatus(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


@dataclass(slots=True, frozen=True)
class FieldState:
    """One state of a field's submit lifecycle.

    `candidate` is set while PENDING, `value` once CONFIRMED and
    `reason` once FAILED.
    """

    status: FieldStatus = FieldStatus.IDLE
    candidate: Any = None
    value: Any = None
    reason: Optional[str] = None


FieldListener = Callable[[Field, FieldState, FieldState], None]
ErrorReporter = Callable[[Optional[Field], ShallError], None]

