import pytest

from provenance.core.registry import InMemoryRegistry
from provenance.core.signer import Ed25519Signer
from provenance.core.storage import InMemoryBlobStore
from provenance.services.bindings import BindingService
from provenance.services.cache import LookupCache
from provenance.services.registration import RegistrationService
from provenance.services.verification import VerificationEngine

NETWORK = "baseSepolia"
OTHER_NETWORK = "polygonAmoy"


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def alice():
    return Ed25519Signer.from_seed(bytes([1]) * 32)


@pytest.fixture
def bob():
    return Ed25519Signer.from_seed(bytes([2]) * 32)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry():
    return InMemoryRegistry()


@pytest.fixture
def blob_store():
    return InMemoryBlobStore()


@pytest.fixture
def cache(clock):
    return LookupCache(ttl=60, pending_ttl=5, clock=clock)


@pytest.fixture
def bindings(registry, cache):
    return BindingService(registry, cache)


@pytest.fixture
def registration(registry, blob_store, cache, bindings):
    return RegistrationService(registry, blob_store, cache=cache, bindings=bindings)


@pytest.fixture
def engine(registry, blob_store, cache):
    return VerificationEngine(registry, blob_store, cache=cache)
