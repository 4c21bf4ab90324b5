import pytest

from crash_rocket.engine import CrashRoundEngine, GameConfig


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


class RecordingChannel:
    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail

    async def send(self, payload):
        if self.fail:
            raise RuntimeError("host channel closed")
        self.sent.append(payload)


def fixed_deriver(x100: int):
    async def derive(seed, level):
        return x100
    return derive


@pytest.fixture
def clock():
    return FakeClock(now=10_000.0)


@pytest.fixture
def channel():
    return RecordingChannel()


@pytest.fixture
def failing_channel():
    return RecordingChannel(fail=True)


@pytest.fixture
def make_engine(clock, channel):
    """Factory: engine with a fixed crash point, fake clock and recording channel."""
    def factory(crash_x100=None, channel_override=None, **config):
        return CrashRoundEngine(
            config=GameConfig(**config),
            channel=channel_override or channel,
            clock=clock,
            deriver=fixed_deriver(crash_x100) if crash_x100 is not None else None,
        )
    return factory
