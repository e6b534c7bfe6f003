import pytest

from nearchat.core.errors import EntropyExhausted, IdentityExpired
from nearchat.core.identity import IdentityManager, TemporaryIdentity, is_valid


def test_issue_mints_fresh_128_bit_tokens(clock):
    manager = IdentityManager(clock=clock)
    tokens = {manager.issue(60).token for _ in range(50)}

    assert len(tokens) == 50
    assert all(len(token) == 32 for token in tokens)
    int(next(iter(tokens)), 16)


def test_issue_sets_window_and_current(clock):
    manager = IdentityManager(clock=clock)
    identity = manager.issue(60)

    assert identity.created_at == clock.now
    assert identity.expires_at == clock.now + 60
    assert manager.current() == identity


def test_issue_rejects_non_positive_ttl(clock):
    manager = IdentityManager(clock=clock)
    with pytest.raises(ValueError):
        manager.issue(0)


def test_is_valid_is_half_open_window():
    identity = TemporaryIdentity(token="a" * 32, created_at=100.0, expires_at=160.0)

    assert not is_valid(identity, 99.9)
    assert is_valid(identity, 100.0)
    assert is_valid(identity, 159.9)
    assert not is_valid(identity, 160.0)


def test_entropy_failure_is_fatal(clock):
    def broken(_n):
        raise OSError("no entropy")

    manager = IdentityManager(clock=clock, entropy=broken)
    with pytest.raises(EntropyExhausted):
        manager.issue(60)


def test_repeated_token_from_entropy_source_is_fatal(clock):
    manager = IdentityManager(clock=clock, entropy=lambda n: b"\x01" * n)
    manager.issue(60)
    with pytest.raises(EntropyExhausted):
        manager.issue(60)


def test_rotate_keeps_old_identity_usable_within_grace(clock):
    manager = IdentityManager(grace_window=5.0, clock=clock)
    old = manager.issue(60)
    new = manager.rotate(old)

    assert manager.current() == new
    assert new.token != old.token
    assert new.ttl == old.ttl

    clock.advance(4.0)
    manager.require_usable(old)
    manager.require_usable(new)

    clock.advance(2.0)
    with pytest.raises(IdentityExpired):
        manager.require_usable(old)
    manager.require_usable(new)


def test_rotate_gives_new_key_material(clock):
    manager = IdentityManager(clock=clock)
    old = manager.issue(60)
    old_pub = manager.keys_for(old).public_key_b64
    new = manager.rotate(old)

    assert manager.keys_for(new).public_key_b64 != old_pub


def test_rotate_requires_current_identity(clock):
    manager = IdentityManager(clock=clock)
    old = manager.issue(60)
    manager.rotate(old)

    with pytest.raises(IdentityExpired):
        manager.rotate(old)


def test_require_usable_rejects_expired_and_foreign(clock):
    manager = IdentityManager(clock=clock)
    mine = manager.issue(10)
    foreign = TemporaryIdentity(token="f" * 32, created_at=clock.now, expires_at=clock.now + 10)

    with pytest.raises(IdentityExpired):
        manager.require_usable(foreign)

    clock.advance(10)
    with pytest.raises(IdentityExpired):
        manager.require_usable(mine)


def test_issue_replaces_previous_identity_without_grace(clock):
    manager = IdentityManager(clock=clock)
    first = manager.issue(60)
    manager.issue(60)

    assert not manager.owns(first.token)
    with pytest.raises(IdentityExpired):
        manager.require_usable(first)


def test_live_lists_current_then_retired_in_grace(clock):
    manager = IdentityManager(grace_window=5.0, clock=clock)
    old = manager.issue(60)
    new = manager.rotate(old)

    assert manager.live() == [new, old]

    clock.advance(6)
    assert manager.live() == [new]


def test_prune_forgets_retired_and_expired(clock):
    manager = IdentityManager(grace_window=5.0, clock=clock)
    old = manager.issue(20)
    new = manager.rotate(old)

    clock.advance(6)
    assert manager.prune() == 1
    assert not manager.owns(old.token)
    with pytest.raises(IdentityExpired):
        manager.keys_for(old)

    clock.advance(20)
    assert manager.prune() == 1
    assert manager.current() is None
    assert not manager.owns(new.token)


def test_fresh_manager_starts_empty(clock):
    first = IdentityManager(clock=clock)
    first.issue(60)

    restarted = IdentityManager(clock=clock)
    assert restarted.current() is None
    assert restarted.live() == []
