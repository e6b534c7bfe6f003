import pytest

from nearchat.core.fusion import ProximityFusion
from nearchat.core.identity import IdentityManager
from nearchat.core.sensing import Sighting, SignalKind
from nearchat.messaging.exchange import ExchangeCoordinator
from nearchat.relay.memory import MemoryRelay


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class Device:
    """One phone: identity manager, fusion engine and coordinator."""

    def __init__(self, relay, clock, grace_window=5.0, **coordinator_kwargs):
        self.clock = clock
        self.identities = IdentityManager(grace_window=grace_window, clock=clock)
        self.fusion = ProximityFusion(is_local=self.identities.owns, clock=clock)
        coordinator_kwargs.setdefault("relay_timeout", None)
        coordinator_kwargs.setdefault("sleep", lambda _seconds: None)
        self.coordinator = ExchangeCoordinator(
            identities=self.identities,
            fusion=self.fusion,
            relay=relay,
            clock=clock,
            **coordinator_kwargs,
        )

    def me(self):
        return self.identities.current()

    def hears(self, other, kind=SignalKind.RADIO, strength=1.0):
        """Simulate a beacon from `other`: key registration plus a sighting."""
        peer = other.me()
        keys = other.identities.keys_for(peer)
        for local in self.identities.live():
            self.identities.keys_for(local).register_peer(local, peer, keys.public_key_b64)
        self.fusion.observe(
            Sighting(identity=peer, kind=kind, strength=strength, observed_at=self.clock())
        )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def relay(clock):
    return MemoryRelay(clock=clock)


@pytest.fixture
def make_device(relay, clock):
    def factory(ttl=60.0, **kwargs):
        device = Device(relay, clock, **kwargs)
        device.identities.issue(ttl)
        return device

    return factory


@pytest.fixture
def pair(make_device):
    """Devices A and B that can hear each other over radio."""
    a = make_device()
    b = make_device()
    a.hears(b)
    b.hears(a)
    return a, b
