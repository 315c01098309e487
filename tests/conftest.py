import random

import pytest

from crypto_utils import EnvelopeCipher
from session import CredentialBlobManager, SessionManager
from vault_store import MemoryStore

TEST_SECRET = "unit-test-secret-that-is-long-enough-0001"
TEST_ITERATIONS = 1000


class FakeClock:
    """Epoch-millisecond clock that only moves when told to."""

    def __init__(self, start=1_700_000_000_000):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, ms):
        self.now += ms


class SeededRandom:
    """Deterministic RandomSource; successive calls still return different bytes."""

    def __init__(self, seed=1234):
        self._rng = random.Random(seed)

    def __call__(self, n):
        return bytes(self._rng.getrandbits(8) for _ in range(n))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def seeded_random():
    return SeededRandom()


@pytest.fixture
def envelope():
    return EnvelopeCipher(TEST_SECRET, iterations=TEST_ITERATIONS)


@pytest.fixture
def session_store():
    return MemoryStore()


@pytest.fixture
def durable_store():
    return MemoryStore()


@pytest.fixture
def sessions(session_store, envelope, clock):
    return SessionManager(session_store, envelope, clock=clock)


@pytest.fixture
def blobs(durable_store, envelope):
    return CredentialBlobManager(durable_store, envelope)
