"""Tests for the per-field synchronization channels."""

import asyncio
from unittest.mock import MagicMock

import pytest
import pytest_asyncio

from shallapi import (
    AddressResolver,
    ColorValue,
    Confirmed,
    DeviceConfig,
    Failed,
    Field,
    FieldStatus,
    LedMode,
    Transport,
)
from shallapi.channels import FieldTracker, build_channels, normalize_mode


@pytest_asyncio.fixture
async def channels(fake_device):
    resolver = AddressResolver(DeviceConfig(base_url=fake_device.base_url))
    async with Transport(resolver) as transport:
        yield build_channels(transport)


# ---------------------------------------------------------------------------
# Field tracker state machine
# ---------------------------------------------------------------------------

class TestFieldTracker:

    def test_starts_idle(self):
        tracker = FieldTracker(Field.POWER)
        assert tracker.state.status is FieldStatus.IDLE

    def test_transitions_notify_listeners(self):
        tracker = FieldTracker(Field.BRIGHTNESS)
        listener = MagicMock()
        tracker.subscribe(listener)

        tracker.pending(10)
        tracker.confirmed(12)

        assert listener.call_count == 2
        field, old, new = listener.call_args_list[0].args
        assert field is Field.BRIGHTNESS
        assert old.status is FieldStatus.IDLE
        assert new.status is FieldStatus.PENDING
        assert new.candidate == 10
        _, old, new = listener.call_args_list[1].args
        assert old.status is FieldStatus.PENDING
        assert new.status is FieldStatus.CONFIRMED
        assert new.value == 12

    def test_failed_carries_reason(self):
        tracker = FieldTracker(Field.MODE)
        tracker.pending(LedMode.ADAPTIVE)
        tracker.failed("boom")
        assert tracker.state.status is FieldStatus.FAILED
        assert tracker.state.reason == "boom"

    def test_raising_listener_does_not_block_others(self):
        tracker = FieldTracker(Field.POWER)
        after = MagicMock()
        tracker.subscribe(MagicMock(side_effect=RuntimeError("broken")))
        tracker.subscribe(after)

        tracker.pending(True)

        assert tracker.state.status is FieldStatus.PENDING
        after.assert_called_once()

    def test_unsubscribe(self):
        tracker = FieldTracker(Field.POWER)
        listener = MagicMock()
        tracker.subscribe(listener)
        tracker.unsubscribe(listener)
        tracker.pending(True)
        tracker.reset()
        listener.assert_not_called()
        assert tracker.state.status is FieldStatus.IDLE


# ---------------------------------------------------------------------------
# Payloads and confirmations
# ---------------------------------------------------------------------------

class TestSubmit:

    @pytest.mark.asyncio
    async def test_power_confirmed(self, channels, fake_device):
        result = await channels[Field.POWER].submit(False)

        assert result == Confirmed(Field.POWER, False)
        assert fake_device.posts("/api/power") == [{"power": False}]

    @pytest.mark.asyncio
    async def test_server_value_overrides_candidate(self, channels, fake_device):
        """The device answers power=false to a request for true."""
        fake_device.overrides["/api/power"] = {"success": True, "power": False}

        result = await channels[Field.POWER].submit(True)

        assert result == Confirmed(Field.POWER, False)

    @pytest.mark.asyncio
    async def test_success_false_still_adopts_echo(self, channels, fake_device):
        fake_device.overrides["/api/brightness"] = {"success": False, "brightness": 64}

        result = await channels[Field.BRIGHTNESS].submit(200)

        assert result == Confirmed(Field.BRIGHTNESS, 64)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("brightness", [0, 1, 128, 254, 255])
    async def test_brightness_in_range(self, channels, brightness):
        result = await channels[Field.BRIGHTNESS].submit(brightness)

        assert isinstance(result, Confirmed)
        assert 0 <= result.value <= 255

    @pytest.mark.asyncio
    async def test_brightness_out_of_range_echo_fails(self, channels, fake_device):
        fake_device.overrides["/api/brightness"] = {"success": True, "brightness": 300}

        result = await channels[Field.BRIGHTNESS].submit(255)

        assert isinstance(result, Failed)
        assert "300" in result.reason

    @pytest.mark.asyncio
    async def test_color_sends_both_values(self, channels, fake_device):
        result = await channels[Field.COLOR].submit(ColorValue(200, 100))

        assert result == Confirmed(Field.COLOR, ColorValue(200, 100))
        assert fake_device.posts("/api/color") == [{"hue": 200, "saturation": 100}]

    @pytest.mark.asyncio
    async def test_color_fails_as_a_whole(self, channels, fake_device):
        """A bad saturation fails the hue along with it."""
        fake_device.overrides["/api/color"] = {
            "success": True,
            "hue": 200,
            "saturation": 999,
        }

        result = await channels[Field.COLOR].submit(ColorValue(200, 100))

        assert isinstance(result, Failed)
        assert result.field is Field.COLOR

    @pytest.mark.asyncio
    async def test_color_missing_saturation(self, channels, fake_device):
        fake_device.overrides["/api/color"] = {"success": True, "hue": 200}

        result = await channels[Field.COLOR].submit(ColorValue(200, 100))

        assert isinstance(result, Failed)

    @pytest.mark.asyncio
    async def test_mode_sends_string(self, channels, fake_device):
        result = await channels[Field.MODE].submit(LedMode.ENVIRONMENTAL)

        assert result == Confirmed(Field.MODE, LedMode.ENVIRONMENTAL)
        assert result.normalized_from is None
        assert fake_device.posts("/api/mode") == [{"mode": "environmental"}]

    @pytest.mark.asyncio
    async def test_unknown_mode_echo_normalized(self, channels, fake_device):
        fake_device.overrides["/api/mode"] = {"success": True, "mode": "party"}

        result = await channels[Field.MODE].submit(LedMode.ADAPTIVE)

        assert isinstance(result, Confirmed)
        assert result.value is LedMode.MANUAL
        assert result.normalized_from == "party"

    @pytest.mark.asyncio
    async def test_transport_failure(self, channels, fake_device):
        fake_device.overrides["/api/power"] = 503

        result = await channels[Field.POWER].submit(True)

        assert isinstance(result, Failed)
        assert "503" in result.reason
        assert result.error is not None

    @pytest.mark.asyncio
    async def test_tracker_follows_submit(self, channels, fake_device):
        fake_device.overrides["/api/power"] = 500
        channel = channels[Field.POWER]
        seen = []
        channel.tracker.subscribe(lambda field, old, new: seen.append(new.status))

        await channel.submit(True)

        assert seen == [FieldStatus.PENDING, FieldStatus.FAILED]


# ---------------------------------------------------------------------------
# Same-field submits
# ---------------------------------------------------------------------------

class TestSerialization:

    @pytest.mark.asyncio
    async def test_second_submit_waits_for_first(self, channels, fake_device):
        fake_device.delays["/api/brightness"] = 0.05
        channel = channels[Field.BRIGHTNESS]

        first = asyncio.ensure_future(channel.submit(10))
        await asyncio.sleep(0)
        assert channel.in_flight
        second = asyncio.ensure_future(channel.submit(20))
        results = await asyncio.gather(first, second)

        assert [r.value for r in results] == [10, 20]
        assert fake_device.posts("/api/brightness") == [
            {"brightness": 10},
            {"brightness": 20},
        ]
        assert channel.tracker.state.value == 20
        assert not channel.in_flight


class TestNormalizeMode:

    @pytest.mark.parametrize("raw", ["manual", "adaptive", "environmental"])
    def test_known_modes(self, raw):
        assert normalize_mode(raw) == (LedMode(raw), False)

    @pytest.mark.parametrize("raw", ["bogus", "Manual", ""])
    def test_unknown_modes_fall_back(self, raw):
        assert normalize_mode(raw) == (LedMode.MANUAL, True)
