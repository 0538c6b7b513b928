import pytest

from auth.channel import reset_auth_channel
from tests.host_helpers import HOST_ORIGIN
from widgetbridge.env import SecurityConfig


class FakeClock:
    def __init__(self, start: float = 1_700_000_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


@pytest.fixture(autouse=True)
def _reset_auth_channel():
    yield
    reset_auth_channel()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def security_config() -> SecurityConfig:
    return SecurityConfig(allowed_origins=frozenset({HOST_ORIGIN}))
