"""Async session that keeps a DeviceSnapshot in sync with one LED device."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set, Tuple, Union

from aiohttp import ClientSession

from .channels import FieldChannel, SubmitTicket, build_channels, normalize_mode
from .exceptions import (
    LoadError,
    MalformedResponse,
    RequestTimeout,
    ShallError,
    UnexpectedServerValue,
)
from .helpers import _in_range, _schema_mismatch
from .model import (
    BRIGHTNESS_RANGE,
    FIELD_ORDER,
    HUE_RANGE,
    SATURATION_RANGE,
    STATUS_SCHEMA_V1,
    STATUS_SCHEMA_V2,
    ColorValue,
    DeviceSnapshot,
    ErrorReporter,
    Failed,
    Field,
    FieldListener,
    FieldResult,
    LedMode,
)
from .resolver import AddressResolver, DeviceConfig
from .transport import Transport

STATUS_PATH = "/api/status"

_LOGGER = logging.getLogger(__name__)

ColorCandidate = Union[ColorValue, Tuple[int, int]]


class DeviceSession:
    """Asynchronous session for one SHALL LED device.

    The session is the only writer of its snapshot. Values reach the
    snapshot either from a full status load or from a channel
    confirmation; a failed submit never changes it.

    Usage:
        async with DeviceSession(DeviceConfig("24587CEB4834")) as device:
            await device.load_status()
            results = await device.apply_all(power=True, brightness=128)
    """

    def __init__(
        self,
        config: Optional[DeviceConfig] = None,
        *,
        session: Optional[ClientSession] = None,
        error_reporter: Optional[ErrorReporter] = None,
    ) -> None:
        self.resolver = AddressResolver(config or DeviceConfig())
        self.transport = Transport(self.resolver, session=session)
        self._channels: Dict[Field, FieldChannel[Any]] = build_channels(self.transport)
        self._snapshot = DeviceSnapshot()
        self._error_reporter = error_reporter
        self._discarded: Set[asyncio.Future] = set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def __aenter__(self) -> DeviceSession:
        await self.transport.__aenter__()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the HTTP session if this device session created it."""
        await self.transport.close()

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------
    @property
    def base_url(self) -> str:
        return self.resolver.base_url

    def update_address(self, address: str) -> str:
        """Point the session at another device address.

        The snapshot is reset since it described the previous device.
        """
        base_url = self.resolver.update(address)
        self._snapshot = DeviceSnapshot()
        return base_url

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------
    @property
    def snapshot(self) -> DeviceSnapshot:
        """A copy of the last confirmed device state."""
        return replace(self._snapshot)

    def channel(self, field: Field) -> FieldChannel[Any]:
        return self._channels[Field(field)]

    def subscribe(self, field: Field, listener: FieldListener) -> None:
        """Register for state transitions of one field's channel."""
        self.channel(field).tracker.subscribe(listener)

    def rollback_value(self, field: Field) -> Any:
        """The value a UI should revert to after a failed submit."""
        return self._snapshot.value_of(Field(field))

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def load_status(self) -> DeviceSnapshot:
        """Fetch the full device status and replace the snapshot.

        Raises LoadError and keeps the previous snapshot when the device
        cannot be reached or answers with an unusable payload.
        """
        response = await self.transport.get(STATUS_PATH)
        if not response.ok:
            assert response.error is not None
            self._report(None, response.error)
            raise LoadError(
                f"Failed to load device status: {response.error}"
            ) from response.error

        try:
            snapshot = self.decode_status(response.data)
        except ShallError as exc:
            self._report(None, exc)
            raise LoadError(f"Failed to load device status: {exc}") from exc

        if snapshot.mode_fallback:
            self._report(
                Field.MODE,
                UnexpectedServerValue(f"Unknown mode {snapshot.raw_mode!r}, using manual"),
            )
        self._snapshot = snapshot
        _LOGGER.debug("Loaded device status from %s: %s", self.base_url, snapshot)
        return self.snapshot

    async def apply_all(
        self,
        *,
        power: Optional[bool] = None,
        brightness: Optional[int] = None,
        color: Optional[ColorCandidate] = None,
        mode: Optional[Union[LedMode, str]] = None,
    ) -> List[FieldResult]:
        """Submit every given field, in power, brightness, color, mode order.

        Each field succeeds or fails on its own; a failure never stops the
        fields after it. Results come back in submission order.
        """
        candidates = {
            Field.POWER: power,
            Field.BRIGHTNESS: brightness,
            Field.COLOR: color,
            Field.MODE: mode,
        }
        results: List[FieldResult] = []
        for field in FIELD_ORDER:
            candidate = candidates[field]
            if candidate is None:
                continue
            results.append(await self.apply_one_immediate(field, candidate))
        return results

    async def apply_one_immediate(
        self,
        field: Field,
        candidate: Any,
        *,
        timeout: Optional[float] = None,
    ) -> FieldResult:
        """Submit a single field and fold the result into the snapshot.

        With `timeout`, the submit is raced against a timer. When the timer
        wins the result is Failed("timeout") and the request is left to
        finish on its own; its late answer is not written to the snapshot.
        """
        field = Field(field)
        channel = self._channels[field]
        value = self._coerce(field, candidate)

        if timeout is None:
            result = await channel.submit(value)
        else:
            ticket = SubmitTicket()
            task = asyncio.ensure_future(channel.submit(value, ticket))
            try:
                result = await asyncio.wait_for(asyncio.shield(task), timeout)
            except asyncio.TimeoutError:
                self._discard(task)
                error = RequestTimeout(f"{field.value} submit timed out after {timeout}s")
                channel.abandon(ticket, "timeout")
                result = Failed(field, "timeout", error)

        self._apply_result(result)
        return result

    async def submit_color(
        self, hue: int, saturation: int, *, timeout: Optional[float] = None
    ) -> FieldResult:
        """Send a hue/saturation pair suggested by an outside source."""
        return await self.apply_one_immediate(
            Field.COLOR, ColorValue(hue, saturation), timeout=timeout
        )

    # ------------------------------------------------------------------
    # Decoding
    # ------------------------------------------------------------------
    @staticmethod
    def decode_status(data: Any) -> DeviceSnapshot:
        """Decode a status payload into a fresh snapshot.

        Two payload versions exist: v2 reports `mode` as a string, v1
        reports `adaptive_mode` as a bool. The same payload always decodes
        to an equal snapshot.
        """
        if isinstance(data, Mapping) and "mode" in data:
            version, schema = 2, STATUS_SCHEMA_V2
        elif isinstance(data, Mapping) and "adaptive_mode" in data:
            version, schema = 1, STATUS_SCHEMA_V1
        else:
            raise MalformedResponse("Status payload carries neither mode nor adaptive_mode")

        mismatch = _schema_mismatch(data, schema)
        if mismatch:
            raise MalformedResponse(f"Unexpected status payload: {mismatch}")

        for key, bounds in (
            ("brightness", BRIGHTNESS_RANGE),
            ("hue", HUE_RANGE),
            ("saturation", SATURATION_RANGE),
        ):
            if not _in_range(data[key], bounds):
                raise UnexpectedServerValue(
                    f"{key} {data[key]} outside {bounds[0]}..{bounds[1]}"
                )

        raw_mode: Optional[str]
        if version == 2:
            raw_mode = data["mode"]
            mode, fallback = normalize_mode(raw_mode)
        else:
            mode = LedMode.ADAPTIVE if data["adaptive_mode"] else LedMode.MANUAL
            raw_mode, fallback = mode.value, False

        return DeviceSnapshot(
            power=data["power"],
            brightness=data["brightness"],
            hue=data["hue"],
            saturation=data["saturation"],
            mode=mode,
            mode_fallback=fallback,
            raw_mode=raw_mode,
            api_version=version,
        )

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------
    @staticmethod
    def summarize(results: Sequence[FieldResult]) -> str:
        """Render batch results as one status line, in submission order."""
        parts = []
        for result in results:
            label = result.field.value.capitalize()
            if isinstance(result, Failed):
                parts.append(f"{label} update failed.")
            elif result.field is Field.POWER:
                parts.append(f"Power set to {'On' if result.value else 'Off'}.")
            elif result.field is Field.COLOR:
                parts.append(
                    f"Color set: Hue {result.value.hue}, "
                    f"Saturation {result.value.saturation}."
                )
            elif result.field is Field.MODE and result.normalized_from is not None:
                parts.append(
                    f"Mode set to {result.normalized_from.capitalize()} "
                    f"(treated as {result.value.value.capitalize()})."
                )
            elif result.field is Field.MODE:
                parts.append(f"Mode set to {result.value.value.capitalize()}.")
            else:
                parts.append(f"{label} set to {result.value}.")
        return " ".join(parts)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _coerce(self, field: Field, candidate: Any) -> Any:
        if field is Field.COLOR and not isinstance(candidate, ColorValue):
            hue, saturation = candidate
            return ColorValue(int(hue), int(saturation))
        if field is Field.MODE:
            return LedMode(candidate)
        return candidate

    def _apply_result(self, result: FieldResult) -> None:
        if isinstance(result, Failed):
            _LOGGER.debug("%s not applied: %s", result.field.value, result.reason)
            self._report(result.field, result.error or ShallError(result.reason))
            return

        if result.field is Field.COLOR:
            self._snapshot.hue = result.value.hue
            self._snapshot.saturation = result.value.saturation
        elif result.field is Field.MODE:
            self._snapshot.mode = result.value
            self._snapshot.mode_fallback = result.normalized_from is not None
            self._snapshot.raw_mode = result.normalized_from or result.value.value
            if result.normalized_from is not None:
                self._report(
                    Field.MODE,
                    UnexpectedServerValue(
                        f"Unknown mode {result.normalized_from!r}, using manual"
                    ),
                )
        else:
            setattr(self._snapshot, result.field.value, result.value)

    def _discard(self, task: asyncio.Future) -> None:
        # Hold a reference so the abandoned request is not garbage collected
        self._discarded.add(task)
        task.add_done_callback(self._discarded.discard)

    def _report(self, field: Optional[Field], error: ShallError) -> None:
        if self._error_reporter is None:
            return
        try:
            self._error_reporter(field, error)
        except Exception as exc:
            _LOGGER.warning("Error reporter raised: %s", exc)
