from datetime import timezone

import pytest

from coldfleet.alerts import AlertDispatcher, build_alert
from coldfleet.errors import AlertDispatchError, SinkUnavailableError
from coldfleet.sinks import AlertChannel, MemoryAlertChannel
from conftest import T0, make_reading


class FlakyChannel(AlertChannel):
    def __init__(self, failures: int):
        self.failures = failures
        self.calls = 0
        self.delivered = []

    async def dispatch(self, alert):
        self.calls += 1
        if self.calls <= self.failures:
            raise SinkUnavailableError("channel down")
        self.delivered.append(alert)


@pytest.mark.asyncio
async def test_stamps_created_at():
    channel = MemoryAlertChannel()
    sent = await AlertDispatcher(channel).dispatch(build_alert(make_reading(9.0)))

    assert sent.created_at is not None
    assert sent.created_at.tzinfo == timezone.utc
    assert channel.alerts == [sent]


@pytest.mark.asyncio
async def test_keeps_existing_created_at():
    channel = MemoryAlertChannel()
    alert = build_alert(make_reading(9.0)).model_copy(update={"created_at": T0})
    sent = await AlertDispatcher(channel).dispatch(alert)
    assert sent.created_at == T0


@pytest.mark.asyncio
async def test_retries_transient_failures():
    channel = FlakyChannel(failures=2)
    dispatcher = AlertDispatcher(channel, attempts=3, backoff=0.0)
    await dispatcher.dispatch(build_alert(make_reading(9.0)))

    assert channel.calls == 3
    assert len(channel.delivered) == 1


@pytest.mark.asyncio
async def test_surfaces_error_after_retries():
    channel = FlakyChannel(failures=10)
    dispatcher = AlertDispatcher(channel, attempts=3, backoff=0.0)

    with pytest.raises(AlertDispatchError):
        await dispatcher.dispatch(build_alert(make_reading(9.0)))
    assert channel.calls == 3
