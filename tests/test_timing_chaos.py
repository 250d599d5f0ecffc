"""Tests for TimingChaosPlugin and timestamp detection."""

import pytest

from mcpcheck.config import TimingChaosConfig
from mcpcheck.timing_chaos import TimingChaosPlugin, is_timestamp_field
from tests.conftest import RecordingSleep, make_context


def fixed_skew(skew: int, **overrides) -> TimingChaosConfig:
    values = {"clock_skew_ms": (skew, skew), "processing_delay_ms": (0, 0)}
    values.update(overrides)
    return TimingChaosConfig(**values)


class TestTimestampFields:
    """Tests for is_timestamp_field."""

    def test_matching_names(self) -> None:
        """Names are matched case-insensitively by substring."""
        assert is_timestamp_field("timestamp", 1)
        assert is_timestamp_field("createdAt", "2024-01-01T00:00:00Z")
        assert is_timestamp_field("lastModified", 5.5)

    def test_non_matching(self) -> None:
        """Other names, non-ISO strings and booleans are left alone."""
        assert not is_timestamp_field("name", 1)
        assert not is_timestamp_field("timestamp", "yesterday")
        assert not is_timestamp_field("timestamp", True)
        assert not is_timestamp_field("timestamp", None)


@pytest.mark.asyncio
class TestTimingChaosPlugin:
    """Tests for timing chaos."""

    async def test_skew_applied_to_nested_timestamps(self) -> None:
        """Numbers and ISO strings shift by the skew, other fields do not."""
        plugin = TimingChaosPlugin(fixed_skew(500), activation_rate=0.0)
        await plugin.initialize(make_context(seed=7))
        message = {
            "jsonrpc": "2.0",
            "method": "notifications/progress",
            "params": {
                "timestamp": 1000,
                "meta": {"createdAt": "2024-01-01T00:00:00.000Z", "name": "job"},
                "events": [{"startTime": 10}],
            },
        }

        result = await plugin.before_send(message)

        assert plugin.clock_skew_ms == 500
        assert result["params"]["timestamp"] == 1500
        assert result["params"]["meta"] == {"createdAt": "2024-01-01T00:00:00.500Z", "name": "job"}
        assert result["params"]["events"] == [{"startTime": 510}]
        assert message["params"]["timestamp"] == 1000

    async def test_skew_applied_on_receive(self) -> None:
        """Incoming messages are skewed too."""
        plugin = TimingChaosPlugin(fixed_skew(-250), activation_rate=0.0)
        await plugin.initialize(make_context(seed=7))
        assert await plugin.after_receive({"time": 1000}) == {"time": 750}

    async def test_iso_with_offset(self) -> None:
        """Strings with an explicit offset keep it."""
        plugin = TimingChaosPlugin(fixed_skew(1500), activation_rate=0.0)
        await plugin.initialize(make_context())
        result = plugin.apply_clock_skew({"updatedAt": "2024-01-01T10:00:00+02:00"})
        assert result == {"updatedAt": "2024-01-01T10:00:01.500+02:00"}

    async def test_zero_skew_passthrough(self) -> None:
        """Without skew the very same object is returned."""
        plugin = TimingChaosPlugin(fixed_skew(0), activation_rate=0.0)
        await plugin.initialize(make_context())
        message = {"timestamp": 1}
        assert await plugin.before_send(message) is message

    async def test_processing_delay(self) -> None:
        """Activated messages wait for the processing delay."""
        sleep = RecordingSleep()
        plugin = TimingChaosPlugin(
            fixed_skew(0, processing_delay_ms=(20, 21)), activation_rate=1.0, sleep=sleep
        )
        await plugin.initialize(make_context())
        await plugin.before_send({"id": 1})
        assert sleep.delays == [0.02]

    async def test_connection_delay_window_doubles(self) -> None:
        """Connection delays are drawn from [low, 2 * high)."""
        sleep = RecordingSleep()
        plugin = TimingChaosPlugin(
            fixed_skew(0, processing_delay_ms=(100, 100)), activation_rate=1.0, sleep=sleep
        )
        await plugin.initialize(make_context())
        await plugin.during_connection()
        [delay] = sleep.delays
        assert 0.1 <= delay < 0.2

    async def test_adjusted_time_and_timeout(self) -> None:
        """Helpers expose the skewed clock and the reduced timeout."""
        plugin = TimingChaosPlugin(
            fixed_skew(500, timeout_reduction_factor=0.5), clock=lambda: 1000.0
        )
        await plugin.initialize(make_context())
        assert plugin.adjusted_time() == 1_000_500.0
        assert plugin.reduce_timeout(10.0) == 5.0

    async def test_skew_is_reproducible(self) -> None:
        """The drawn skew depends only on the seed."""
        skews = []
        for _ in range(2):
            plugin = TimingChaosPlugin(TimingChaosConfig())
            await plugin.initialize(make_context(seed=31337))
            skews.append(plugin.clock_skew_ms)
        assert skews[0] == skews[1]
        assert -1000 <= skews[0] < 1000
