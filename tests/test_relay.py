import pytest

from nearchat.relay.memory import DeliveryStatus, MemoryRelay, RelayResult

WIRE = {"ct": "AAAA", "nonce": "BBBB", "tag": "CCCC"}


def test_put_rejects_anything_but_an_envelope(relay):
    with pytest.raises(ValueError):
        relay.put("b", "a", {"text": "hi"}, 10)
    with pytest.raises(ValueError):
        relay.put("b", "a", dict(WIRE, text="hi"), 10)
    with pytest.raises(ValueError):
        relay.put("b", "a", WIRE, 0)


def test_fetch_returns_only_addressed_messages(relay, clock):
    first = relay.put("b", "a", WIRE, 10)
    clock.advance(1)
    second = relay.put("b", "c", WIRE, 10)
    relay.put("z", "a", WIRE, 10)

    fetched = relay.fetch("b")
    assert [message_id for message_id, _ in fetched] == [first, second]
    assert all(item.to_token == "b" for _, item in fetched)


def test_delete_after_fetch_reports_fetched(relay):
    message_id = relay.put("b", "a", WIRE, 10)
    assert relay.status(message_id) == DeliveryStatus.PENDING

    relay.fetch("b")
    assert relay.delete(message_id) == RelayResult.OK
    assert relay.delete(message_id) == RelayResult.NOT_FOUND
    assert relay.status(message_id) == DeliveryStatus.FETCHED
    assert relay.fetch("b") == []


def test_delete_without_fetch_leaves_no_receipt(relay):
    message_id = relay.put("b", "a", WIRE, 10)
    assert relay.delete(message_id) == RelayResult.OK
    assert relay.status(message_id) == DeliveryStatus.UNKNOWN


def test_messages_purged_after_ttl(relay, clock):
    message_id = relay.put("b", "a", WIRE, 10)
    clock.advance(10)

    assert relay.fetch("b") == []
    assert relay.pending() == 0
    assert relay.status(message_id) == DeliveryStatus.UNKNOWN


def test_tombstones_expire(clock):
    relay = MemoryRelay(clock=clock, tombstone_ttl=30)
    message_id = relay.put("b", "a", WIRE, 10)
    relay.fetch("b")
    relay.delete(message_id)

    clock.advance(31)
    assert relay.status(message_id) == DeliveryStatus.UNKNOWN


def test_pending_counts(relay):
    relay.put("b", "a", WIRE, 10)
    relay.put("b", "a", WIRE, 10)
    relay.put("c", "a", WIRE, 10)

    assert relay.pending() == 3
    assert relay.pending("b") == 2


def test_repeated_put_with_same_id_stores_once(relay):
    first = relay.put("b", "a", WIRE, 10, "m1")
    again = relay.put("b", "a", WIRE, 10, "m1")

    assert first == again == "m1"
    assert relay.pending("b") == 1


def test_put_after_delete_is_ignored(relay):
    relay.put("b", "a", WIRE, 10, "m1")
    relay.fetch("b")
    relay.delete("m1")

    assert relay.put("b", "a", WIRE, 10, "m1") == "m1"
    assert relay.fetch("b") == []
    assert relay.status("m1") == DeliveryStatus.FETCHED
