import pytest

from payouts.config import Settings
from payouts.executor import PayoutExecutor
from payouts.storage import InMemoryStorage
from payouts.tests.helpers import FakeGateway


@pytest.fixture
def settings():
    return Settings(gateway_retry_backoff_seconds=0, _env_file=None)


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def executor(storage, gateway, settings):
    return PayoutExecutor(storage, gateway, settings, sleep=lambda _: None)
