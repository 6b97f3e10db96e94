import pytest
from sqlalchemy.exc import SQLAlchemyError
from orca.chat.relay import RelayEngine, RelayState, SessionLocks, StreamAccumulator, TeeWriter
from orca.chat.store import MessageStore
from orca.errors import CommitFailure, SessionNotFound, TurnInProgress, UpstreamError
from orca.models import Role


class FailingCommitStore(MessageStore):
    def append(self, session_id, role, content):
        if Role(role) is Role.ASSISTANT:
            raise SQLAlchemyError("store unavailable")
        return super().append(session_id, role, content)


def stored(store, session_id):
    return [(m.role, m.content) for m in store.list_ordered(session_id)]


def test_concrete_turn(store, chat, upstream):
    store.append(chat.id, "user", "hi")
    turn = RelayEngine(store, upstream).start(chat.id, "how are you")

    assert "".join(turn.stream()) == "I'm fine, thanks"
    assert stored(store, chat.id) == [
        ("user", "hi"),
        ("user", "how are you"),
        ("assistant", "I'm fine, thanks"),
    ]
    assert turn.state is RelayState.DONE
    assert turn.error is None


def test_upstream_receives_history_including_new_message(store, chat, upstream):
    store.append(chat.id, "user", "hi")
    store.append(chat.id, "assistant", "hello")
    turn = RelayEngine(store, upstream).start(chat.id, "how are you")
    list(turn.stream())

    assert upstream.histories == [[
        {"role": "user", "content": "hi"},
        {"role": "assistant", "content": "hello"},
        {"role": "user", "content": "how are you"},
    ]]


@pytest.mark.parametrize("fragments", [
    [],
    ["one"],
    ["a", "", "b", "c"],
    ["multi\nline ", "ünïcödé ", "🐋"],
])
def test_streamed_bytes_equal_committed_message(store, chat, upstream, fragments):
    upstream.fragments = fragments
    turn = RelayEngine(store, upstream).start(chat.id, "go")
    chunks = list(turn.stream())

    assert chunks == fragments
    assert stored(store, chat.id)[-1] == ("assistant", "".join(fragments))
    assert turn.reply == "".join(chunks)


def test_partial_reply_is_committed_when_upstream_fails(store, chat, upstream):
    upstream.fragments = ["f1", "f2"]
    upstream.error = UpstreamError("stream interrupted", 502)
    turn = RelayEngine(store, upstream).start(chat.id, "go")

    assert list(turn.stream()) == ["f1", "f2"]
    assert stored(store, chat.id)[-1] == ("assistant", "f1f2")
    assert len(upstream.histories) == 1
    assert turn.state is RelayState.DONE
    assert isinstance(turn.error, UpstreamError)


def test_missing_session_fails_before_streaming(store, upstream):
    engine = RelayEngine(store, upstream)

    with pytest.raises(SessionNotFound):
        engine.start(404, "anyone there?")
    assert upstream.histories == []
    assert list(store.list_ordered(404)) == []


def test_commit_failure_still_ends_stream_quietly(engine, chat, upstream):
    store = FailingCommitStore(engine)
    turn = RelayEngine(store, upstream).start(chat.id, "go")

    assert "".join(turn.stream()) == "I'm fine, thanks"
    assert turn.state is RelayState.ERRORED
    assert isinstance(turn.error, CommitFailure)
    assert stored(store, chat.id) == [("user", "go")]


def test_client_disconnect_commits_what_was_sent(store, chat, upstream):
    upstream.fragments = ["first ", "second ", "third"]
    turn = RelayEngine(store, upstream).start(chat.id, "go")
    chunks = turn.stream()

    assert next(chunks) == "first "
    chunks.close()

    assert upstream.closed
    assert stored(store, chat.id)[-1] == ("assistant", "first ")
    assert turn.state is RelayState.DONE


def test_relay_stops_after_max_seconds(store, chat, upstream):
    upstream.fragments = ["a", "b", "c"]
    ticks = iter([0, 1, 10])
    turn = RelayEngine(store, upstream, max_seconds=5, clock=lambda: next(ticks)).start(chat.id, "go")

    assert list(turn.stream()) == ["a", "b"]
    assert upstream.closed
    assert stored(store, chat.id)[-1] == ("assistant", "ab")
    assert isinstance(turn.error, UpstreamError)


def test_session_lock_serialises_turns(store, chat, upstream):
    engine = RelayEngine(store, upstream, locks=SessionLocks(timeout=0.01))
    first = engine.start(chat.id, "one")

    with pytest.raises(TurnInProgress):
        engine.start(chat.id, "two")

    list(first.stream())
    second = engine.start(chat.id, "two")
    list(second.stream())
    assert [c for r, c in stored(store, chat.id) if r == "user"] == ["one", "two"]


def test_session_lock_released_when_session_missing(store, upstream):
    engine = RelayEngine(store, upstream, locks=SessionLocks(timeout=0.01))

    for _ in range(2):
        with pytest.raises(SessionNotFound):
            engine.start(404, "hello")


def test_tee_writes_every_sink_in_order():
    a, b = StreamAccumulator(), StreamAccumulator()
    tee = TeeWriter(a, b)
    for fragment in ["x", "y", "z"]:
        tee.write(fragment)

    assert a.getvalue() == b.getvalue() == "xyz"


def test_tee_does_not_reach_later_sinks_after_failure():
    class BrokenSink:
        def write(self, fragment):
            raise ConnectionError("gone")

    accumulator = StreamAccumulator()
    with pytest.raises(ConnectionError):
        TeeWriter(BrokenSink(), accumulator).write("lost")
    assert accumulator.getvalue() == ""
