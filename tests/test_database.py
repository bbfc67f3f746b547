import pytest

from chatcore.database import call_after_commit, make_get_db


@pytest.mark.asyncio
async def test_after_commit_callbacks_run_once_committed(session_factory):
    calls = []

    async def callback():
        calls.append("flushed")

    dependency = make_get_db(session_factory)()
    session = await dependency.__anext__()
    call_after_commit(session, callback)
    assert calls == []

    with pytest.raises(StopAsyncIteration):
        await dependency.__anext__()

    assert calls == ["flushed"]


@pytest.mark.asyncio
async def test_after_commit_callbacks_dropped_on_rollback(session_factory):
    calls = []

    async def callback():
        calls.append("flushed")

    dependency = make_get_db(session_factory)()
    session = await dependency.__anext__()
    call_after_commit(session, callback)

    with pytest.raises(RuntimeError):
        await dependency.athrow(RuntimeError("handler failed"))

    assert calls == []
