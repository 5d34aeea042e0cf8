"""Per-attribute synchronization channels.

Each channel owns one device attribute. A submit posts the candidate,
adopts whatever value the device echoes back and reports either
`Confirmed` or `Failed`. Channels never touch the snapshot themselves;
the session writes confirmed values.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Generic, List, Mapping, Optional, Tuple, TypeVar

from .exceptions import UnexpectedServerValue
from .helpers import _in_range
from .model import (
    BRIGHTNESS_RANGE,
    HUE_RANGE,
    SATURATION_RANGE,
    ColorValue,
    Confirmed,
    Failed,
    Field,
    FieldListener,
    FieldResult,
    FieldState,
    FieldStatus,
    LedMode,
)
from .transport import Transport

T = TypeVar("T")

_LOGGER = logging.getLogger(__name__)


class FieldTracker:
    """Submit lifecycle of one field: IDLE, PENDING, CONFIRMED or FAILED.

    Listeners are called as `listener(field, old_state, new_state)` on
    every transition. A presentation layer uses this to show a spinner
    while pending and to revert its control after a failure.
    """

    def __init__(self, field: Field) -> None:
        self.field = field
        self._state = FieldState()
        self._listeners: List[FieldListener] = []

    @property
    def state(self) -> FieldState:
        return self._state

    def subscribe(self, listener: FieldListener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: FieldListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def pending(self, candidate: Any) -> FieldState:
        state = FieldState(FieldStatus.PENDING, candidate=candidate)
        self._move(state)
        return state

    def confirmed(self, value: Any) -> None:
        self._move(FieldState(FieldStatus.CONFIRMED, value=value))

    def failed(self, reason: str) -> None:
        self._move(FieldState(FieldStatus.FAILED, reason=reason))

    def reset(self) -> None:
        self._move(FieldState())

    def _move(self, new: FieldState) -> None:
        old, self._state = self._state, new
        for listener in list(self._listeners):
            try:
                listener(self.field, old, new)
            except Exception as exc:
                _LOGGER.warning("%s listener raised: %s", self.field.value, exc)


class SubmitTicket:
    """Handle on one submit. An abandoned ticket no longer moves the tracker."""

    __slots__ = ("abandoned", "pending")

    def __init__(self) -> None:
        self.abandoned = False
        self.pending: Optional[FieldState] = None


class FieldChannel(Generic[T]):
    """Base channel: POST a payload, decode the echoed value.

    Subclasses define `field`, `path`, `envelope` (the response schema)
    and the two conversions between values and JSON.
    """

    field: Field
    path: str
    envelope: Mapping[str, type]

    def __init__(self, transport: Transport) -> None:
        self._transport = transport
        self._lock = asyncio.Lock()
        self.tracker = FieldTracker(self.field)

    @property
    def in_flight(self) -> bool:
        return self._lock.locked()

    async def submit(
        self, candidate: T, ticket: Optional[SubmitTicket] = None
    ) -> FieldResult:
        """Send `candidate` and return the device's verdict.

        Submits on the same channel run one at a time in call order, so a
        later submit never has its answer overwritten by an earlier one.
        Pass a `ticket` to be able to `abandon` the submit later.
        """
        ticket = ticket or SubmitTicket()
        async with self._lock:
            if not ticket.abandoned:
                ticket.pending = self.tracker.pending(candidate)
            result = await self._submit(candidate)
            if not ticket.abandoned and self.tracker.state is ticket.pending:
                if isinstance(result, Confirmed):
                    self.tracker.confirmed(result.value)
                else:
                    self.tracker.failed(result.reason)
            return result

    def abandon(self, ticket: SubmitTicket, reason: str) -> None:
        """Stop a submit from touching the tracker; its answer is ignored.

        The tracker is failed only if this submit is the one pending.
        """
        ticket.abandoned = True
        if ticket.pending is not None and self.tracker.state is ticket.pending:
            self.tracker.failed(reason)

    async def _submit(self, candidate: T) -> FieldResult:
        payload = self.to_payload(candidate)
        response = await self._transport.post(self.path, payload, schema=self.envelope)
        if not response.ok:
            return Failed(self.field, str(response.error), response.error)

        assert response.data is not None
        if not response.data.get("success"):
            # The echoed value is still what the device now holds
            _LOGGER.debug("%s: device reported success=false", self.path)
        try:
            value, normalized_from = self.decode(response.data)
        except UnexpectedServerValue as exc:
            _LOGGER.warning("%s: %s", self.path, exc)
            return Failed(self.field, str(exc), exc)
        _LOGGER.debug("%s confirmed %r (requested %r)", self.path, value, candidate)
        return Confirmed(self.field, value, normalized_from)

    def decode(self, data: Mapping[str, Any]) -> Tuple[T, Optional[str]]:
        """Return the echoed value and, if it was normalized, the raw one."""
        return self.from_response(data), None

    def to_payload(self, candidate: T) -> Dict[str, Any]:
        raise NotImplementedError

    def from_response(self, data: Mapping[str, Any]) -> T:
        raise NotImplementedError


def _checked(name: str, value: int, bounds: Tuple[int, int]) -> int:
    if not _in_range(value, bounds):
        raise UnexpectedServerValue(
            f"{name} {value} outside {bounds[0]}..{bounds[1]}"
        )
    return value


class PowerChannel(FieldChannel[bool]):
    field = Field.POWER
    path = "/api/power"
    envelope = {"success": bool, "power": bool}

    def to_payload(self, candidate: bool) -> Dict[str, Any]:
        return {"power": bool(candidate)}

    def from_response(self, data: Mapping[str, Any]) -> bool:
        return data["power"]


class BrightnessChannel(FieldChannel[int]):
    field = Field.BRIGHTNESS
    path = "/api/brightness"
    envelope = {"success": bool, "brightness": int}

    def to_payload(self, candidate: int) -> Dict[str, Any]:
        return {"brightness": int(candidate)}

    def from_response(self, data: Mapping[str, Any]) -> int:
        return _checked("brightness", data["brightness"], BRIGHTNESS_RANGE)


class ColorChannel(FieldChannel[ColorValue]):
    """Hue and saturation travel together and confirm together."""

    field = Field.COLOR
    path = "/api/color"
    envelope = {"success": bool, "hue": int, "saturation": int}

    def to_payload(self, candidate: ColorValue) -> Dict[str, Any]:
        return {"hue": int(candidate.hue), "saturation": int(candidate.saturation)}

    def from_response(self, data: Mapping[str, Any]) -> ColorValue:
        return ColorValue(
            hue=_checked("hue", data["hue"], HUE_RANGE),
            saturation=_checked("saturation", data["saturation"], SATURATION_RANGE),
        )


class ModeChannel(FieldChannel[LedMode]):
    """Unknown echoed modes confirm as MANUAL with `normalized_from` set."""

    field = Field.MODE
    path = "/api/mode"
    envelope = {"success": bool, "mode": str}

    def to_payload(self, candidate: LedMode) -> Dict[str, Any]:
        return {"mode": LedMode(candidate).value}

    def decode(self, data: Mapping[str, Any]) -> Tuple[LedMode, Optional[str]]:
        mode, fallback = normalize_mode(data["mode"])
        return mode, (data["mode"] if fallback else None)


def normalize_mode(raw: Any) -> Tuple[LedMode, bool]:
    """Map a device mode string to `LedMode`.

    Unknown strings fall back to MANUAL; the second element tells a
    fallback apart from a genuine "manual".
    """
    try:
        return LedMode(raw), False
    except ValueError:
        _LOGGER.warning("Unknown mode %r from device, treating as manual", raw)
        return LedMode.MANUAL, True


def build_channels(transport: Transport) -> Dict[Field, FieldChannel[Any]]:
    channels: List[FieldChannel[Any]] = [
        PowerChannel(transport),
        BrightnessChannel(transport),
        ColorChannel(transport),
        ModeChannel(transport),
    ]
    return {channel.field: channel for channel in channels}
