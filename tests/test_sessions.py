import asyncio
import itertools

import pytest

from errors import AlreadyBound, InvalidCode, SessionExists, SessionNotFound
from registry import ConnectionRegistry, HostBinding, ParticipantBinding
from sessions import HOST_CLOSED_REASON, HOST_DISCONNECTED_REASON, SessionTable
from tests.fakes import FakeTransport


@pytest.fixture
def registry():
    return ConnectionRegistry()


@pytest.fixture
def table():
    return SessionTable()


def _connect(registry, **kwargs):
    return registry.register(FakeTransport(**kwargs))


@pytest.mark.parametrize("variant", ["ABC123", "abc123", "  abc123 ", "AbC123\n"])
def test_create_twice_with_same_normalized_code_fails(registry, table, variant):
    assert table.create("abc123", _connect(registry)) == "ABC123"

    other = _connect(registry)
    with pytest.raises(SessionExists):
        table.create(variant, other)
    assert other.binding is None
    assert len(table) == 1


@pytest.mark.parametrize("code", ["", "   ", None, 17])
def test_create_rejects_empty_codes(registry, table, code):
    host = _connect(registry)
    with pytest.raises(InvalidCode):
        table.create(code, host)
    assert host.binding is None
    assert len(table) == 0


def test_create_binds_host(registry, table):
    host = _connect(registry)
    table.create("dnd", host)
    assert host.binding == HostBinding(code="DND")
    assert table.host("dnd") is host


def test_create_only_from_unbound(registry, table):
    host = _connect(registry)
    table.create("one", host)
    with pytest.raises(AlreadyBound):
        table.create("two", host)

    player = _connect(registry)
    asyncio.run(table.join("one", player))
    with pytest.raises(AlreadyBound):
        table.create("three", player)
    assert "TWO" not in table
    assert "THREE" not in table


def test_join_unknown_code_fails(registry, table):
    with pytest.raises(SessionNotFound):
        asyncio.run(table.join("nope", _connect(registry)))


def test_join_empty_code_is_invalid(registry, table):
    with pytest.raises(InvalidCode):
        asyncio.run(table.join("  ", _connect(registry)))


def test_join_against_dead_host_fails_and_removes_stale_session(registry, table):
    host = _connect(registry)
    table.create("stale", host)
    early = _connect(registry)
    asyncio.run(table.join("stale", early))

    host.transport.open = False
    with pytest.raises(SessionNotFound):
        asyncio.run(table.join("stale", _connect(registry)))

    assert "stale" not in table
    assert early.binding is None
    assert early.transport.of_type("session-closed") == [
        {"type": "session-closed", "message": HOST_DISCONNECTED_REASON}
    ]


def test_join_returns_unique_ids_and_binds(registry, table):
    table.create("a", _connect(registry))
    table.create("b", _connect(registry))

    ids = []
    for code in ["a", "b", "a", "b", "a"]:
        player = _connect(registry)
        normalized, participant_id = asyncio.run(table.join(code, player))
        assert player.binding == ParticipantBinding(code=normalized, participant_id=participant_id)
        ids.append(participant_id)
    assert len(set(ids)) == len(ids)
    assert table.describe("a").participant_count == 3


def test_join_never_hands_out_a_live_id_twice(registry):
    repeating = itertools.chain(["dup", "dup", "dup"], (f"id-{n}" for n in itertools.count()))
    table = SessionTable(id_factory=lambda: next(repeating))
    table.create("room", _connect(registry))

    _, first = asyncio.run(table.join("room", _connect(registry)))
    _, second = asyncio.run(table.join("room", _connect(registry)))
    assert first == "dup"
    assert second == "id-0"


def test_join_rebinds_participant_and_tells_old_host(registry, table):
    old_host = _connect(registry)
    new_host = _connect(registry)
    table.create("old", old_host)
    table.create("new", new_host)
    player = _connect(registry)

    _, old_id = asyncio.run(table.join("old", player))
    _, new_id = asyncio.run(table.join("new", player))

    assert table.participant("old", old_id) is None
    assert table.participant("new", new_id) is player
    assert player.binding.code == "NEW"
    assert old_host.transport.of_type("player-left") == [{"type": "player-left", "playerId": old_id}]
    assert player.transport.closed_with is None


def test_join_by_host_of_another_session_ends_that_session(registry, table):
    host = _connect(registry)
    table.create("mine", host)
    player = _connect(registry)
    asyncio.run(table.join("mine", player))
    table.create("theirs", _connect(registry))

    asyncio.run(table.join("theirs", host))

    assert "mine" not in table
    assert player.binding is None
    assert player.transport.of_type("session-closed")
    assert isinstance(host.binding, ParticipantBinding)
    assert host.transport.closed_with is None


def test_host_cannot_join_its_own_session(registry, table):
    host = _connect(registry)
    table.create("mine", host)
    with pytest.raises(AlreadyBound):
        asyncio.run(table.join("MINE", host))
    assert host.binding == HostBinding(code="MINE")


def test_close_notifies_participants_and_removes_session(registry, table):
    host = _connect(registry)
    table.create("abc123", host)
    players = [_connect(registry) for _ in range(2)]
    for player in players:
        asyncio.run(table.join("abc123", player))

    assert asyncio.run(table.close("ABC123", host)) is True

    for player in players:
        assert player.transport.of_type("session-closed") == [
            {"type": "session-closed", "message": HOST_CLOSED_REASON}
        ]
        assert player.binding is None
        assert player.transport.closed_with[0] == 1000
    assert host.binding is None
    assert host.transport.closed_with is None
    with pytest.raises(SessionNotFound):
        asyncio.run(table.join("abc123", _connect(registry)))


def test_close_by_non_host_is_ignored(registry, table):
    host = _connect(registry)
    table.create("keep", host)
    player = _connect(registry)
    asyncio.run(table.join("keep", player))

    assert asyncio.run(table.close("keep", player)) is False
    assert asyncio.run(table.close("keep", _connect(registry))) is False
    assert asyncio.run(table.close("missing", host)) is False
    assert "keep" in table
    assert player.transport.of_type("session-closed") == []


def test_close_by_dead_host_is_ignored(registry, table):
    host = _connect(registry)
    table.create("keep", host)
    host.transport.open = False
    assert asyncio.run(table.close("keep", host)) is False
    assert "keep" in table


def test_remove_participant_requires_matching_connection(registry, table):
    host = _connect(registry)
    table.create("room", host)
    player = _connect(registry)
    _, participant_id = asyncio.run(table.join("room", player))

    assert asyncio.run(table.remove_participant("room", participant_id, _connect(registry))) is False
    assert asyncio.run(table.remove_participant("room", "p-unknown", player)) is False
    assert table.participant("room", participant_id) is player

    assert asyncio.run(table.remove_participant("room", participant_id, player)) is True
    assert table.participant("room", participant_id) is None
    assert player.binding is None
    assert host.transport.of_type("player-left") == [{"type": "player-left", "playerId": participant_id}]

    assert asyncio.run(table.remove_participant("room", participant_id, player)) is False
    assert len(host.transport.of_type("player-left")) == 1


def test_remove_participant_skips_dead_host(registry, table):
    host = _connect(registry)
    table.create("room", host)
    player = _connect(registry)
    _, participant_id = asyncio.run(table.join("room", player))
    host.transport.open = False

    assert asyncio.run(table.remove_participant("room", participant_id, player)) is True
    assert host.transport.of_type("player-left") == []


def test_detach_host_ends_session_once(registry, table):
    host = _connect(registry)
    table.create("room", host)
    player = _connect(registry)
    asyncio.run(table.join("room", player))

    asyncio.run(table.detach(host))
    asyncio.run(table.detach(host))

    assert "room" not in table
    assert len(player.transport.of_type("session-closed")) == 1


def test_detach_unbound_connection_is_noop(registry, table):
    connection = _connect(registry)
    asyncio.run(table.detach(connection))
    assert connection.transport.sent == []


def test_describe(registry, table):
    assert table.describe("none") is None
    host = _connect(registry)
    table.create("room", host)
    asyncio.run(table.join("room", _connect(registry)))

    summary = table.describe(" room ")
    assert summary.code == "ROOM"
    assert summary.host_connected is True
    assert summary.participant_count == 1


def test_session_end_with_failing_participant_send(registry, table):
    host = _connect(registry)
    table.create("room", host)
    healthy = [_connect(registry) for _ in range(2)]
    flaky = _connect(registry, fail_sends=True)
    for player in [healthy[0], flaky, healthy[1]]:
        asyncio.run(table.join("room", player))

    assert asyncio.run(table.close("room", host)) is True
    asyncio.run(table.detach(host))

    assert "room" not in table
    assert flaky.binding is None
    assert flaky.transport.closed_with[0] == 1000
    for player in healthy:
        assert player.transport.of_type("session-closed") == [
            {"type": "session-closed", "message": HOST_CLOSED_REASON}
        ]
        assert player.binding is None


def test_host_disconnect_with_failing_participant_send(registry, table):
    host = _connect(registry)
    table.create("room", host)
    flaky = _connect(registry, fail_sends=True)
    healthy = _connect(registry)
    asyncio.run(table.join("room", flaky))
    asyncio.run(table.join("room", healthy))

    asyncio.run(table.detach(host))

    assert "room" not in table
    assert flaky.binding is None
    assert healthy.transport.of_type("session-closed") == [
        {"type": "session-closed", "message": HOST_DISCONNECTED_REASON}
    ]
    # A failed notice must not cascade into another teardown
    asyncio.run(table.detach(flaky))
    assert len(healthy.transport.of_type("session-closed")) == 1
