import asyncio
from datetime import date
from unittest.mock import AsyncMock

import pytest

from conftest import LISBON, FrozenClock, utc
from runtime.errors import (
    ConflictError, NotSubscribedError, SessionAlreadyOpenError, SkipNotAllowedError, TransientIOError,
)
from runtime.interview import (
    MANUAL_INTRO, QUESTIONS, SCHEDULED_INTRO, SUBMITTED_MESSAGE, InterviewEngine, InterviewStage,
)

MONDAY = date(2026, 1, 5)


@pytest.fixture
def clock():
    return FrozenClock(utc(2026, 1, 5, 9, 30))


@pytest.fixture
def engine(db, transport, clock):
    asyncio.run(db.add_subscriber("U1", "bob"))
    return InterviewEngine(db, transport, LISBON, now_fn=clock)


def test_full_interview_saves_and_posts(engine, db, transport):
    async def scenario():
        await engine.start_interview("U1")
        assert await engine.handle_answer("U1", "Fixed the login bug") is None
        assert await engine.handle_answer("U1", "Write tests") is None
        return await engine.handle_answer("U1", "Waiting on review")

    response = asyncio.run(scenario())

    assert response.yesterday == "Fixed the login bug"
    assert response.today == "Write tests"
    assert response.blockers == "Waiting on review"
    assert response.submission_date == MONDAY
    assert not engine.has_session("U1")

    assert transport.messages_for("U1") == [
        MANUAL_INTRO, QUESTIONS[0], QUESTIONS[1], QUESTIONS[2], SUBMITTED_MESSAGE,
    ]
    assert len(transport.channel_posts) == 1
    post = transport.channel_posts[0]
    assert "@bob" in post
    assert "Write tests" in post
    assert "Waiting on review" in post

    saved = asyncio.run(db.get_user_standup_for_day("U1", MONDAY))
    assert saved.today == "Write tests"


def test_scheduled_start_uses_scheduled_intro(engine, transport):
    asyncio.run(engine.start_interview("U1", "bob", scheduled=True))
    assert transport.messages_for("U1") == [SCHEDULED_INTRO, QUESTIONS[0]]


def test_skips_leave_sections_out_of_summary(engine, transport):
    async def scenario():
        await engine.start_interview("U1")
        await engine.handle_skip("U1")
        await engine.handle_answer("U1", "Ship the release")
        return await engine.handle_skip("U1")

    response = asyncio.run(scenario())

    assert response.yesterday == ""
    assert response.blockers == ""
    post = transport.channel_posts[0]
    assert "Yesterday" not in post
    assert "Blockers" not in post
    assert "Ship the release" in post


def test_today_question_cannot_be_skipped(engine):
    async def scenario():
        await engine.start_interview("U1")
        await engine.handle_answer("U1", "Reviews")
        with pytest.raises(SkipNotAllowedError):
            await engine.handle_skip("U1")
        return engine.registry.get("U1")

    session = asyncio.run(scenario())
    assert session.stage == InterviewStage.AWAITING_TODAY
    assert session.answers[0] == "Reviews"


def test_concurrent_starts_open_one_session(engine, transport):
    async def scenario():
        return await asyncio.gather(
            engine.start_interview("U1"),
            engine.start_interview("U1"),
            return_exceptions=True,
        )

    results = asyncio.run(scenario())

    conflicts = [r for r in results if isinstance(r, ConflictError)]
    assert len(conflicts) == 1
    assert isinstance(conflicts[0], SessionAlreadyOpenError)
    assert len(engine.registry) == 1
    assert transport.messages_for("U1").count(QUESTIONS[0]) == 1


def test_concurrent_final_answers_complete_once(engine, db, transport):
    async def scenario():
        await engine.start_interview("U1")
        await engine.handle_answer("U1", "a")
        await engine.handle_answer("U1", "b")
        return await asyncio.gather(
            engine.handle_answer("U1", "c1"),
            engine.handle_answer("U1", "c2"),
        )

    results = asyncio.run(scenario())

    completed = [r for r in results if r is not None]
    assert len(completed) == 1
    assert completed[0].blockers in ("c1", "c2")
    assert len(transport.channel_posts) == 1
    assert transport.messages_for("U1").count(SUBMITTED_MESSAGE) == 1
    assert not engine.has_session("U1")

    saved = asyncio.run(db.get_user_standup_for_day("U1", MONDAY))
    assert saved.blockers == completed[0].blockers


def test_start_while_open_is_rejected(engine):
    async def scenario():
        await engine.start_interview("U1")
        with pytest.raises(SessionAlreadyOpenError):
            await engine.start_interview("U1", scheduled=True)

    asyncio.run(scenario())


def test_second_submission_same_day_replaces_first(engine, db):
    async def submit(today_text):
        await engine.start_interview("U1")
        await engine.handle_answer("U1", "a")
        await engine.handle_answer("U1", today_text)
        await engine.handle_skip("U1")

    asyncio.run(submit("first plan"))
    asyncio.run(submit("second plan"))

    standups = asyncio.run(db.get_standups_for_day(MONDAY))
    assert [s.today for s in standups] == ["second plan"]


def test_persistence_failure_drops_session(engine, db, transport):
    db.save_standup = AsyncMock(side_effect=RuntimeError("disk full"))

    async def scenario():
        await engine.start_interview("U1")
        await engine.handle_answer("U1", "a")
        await engine.handle_answer("U1", "b")
        with pytest.raises(TransientIOError):
            await engine.handle_answer("U1", "c")

    asyncio.run(scenario())

    assert not engine.has_session("U1")
    assert transport.channel_posts == []
    assert SUBMITTED_MESSAGE not in transport.messages_for("U1")


def test_channel_failure_drops_session(engine, transport):
    transport.fail_channel = True

    async def scenario():
        await engine.start_interview("U1")
        await engine.handle_answer("U1", "a")
        await engine.handle_answer("U1", "b")
        with pytest.raises(TransientIOError):
            await engine.handle_skip("U1")

    asyncio.run(scenario())
    assert not engine.has_session("U1")


def test_undeliverable_first_question_drops_session(engine, transport):
    transport.failing_users.add("U1")

    with pytest.raises(TransientIOError):
        asyncio.run(engine.start_interview("U1"))
    assert not engine.has_session("U1")


def test_events_without_session_are_ignored(engine, transport):
    assert asyncio.run(engine.handle_answer("U1", "hello?")) is None
    assert asyncio.run(engine.handle_skip("U1")) is None
    assert transport.direct_messages == []


def test_manual_start_requires_subscription(engine):
    with pytest.raises(NotSubscribedError):
        asyncio.run(engine.start_interview("U404"))
    assert not engine.has_session("U404")


def test_manual_start_rejected_on_vacation(engine, db):
    asyncio.run(db.set_vacation("U1", date(2026, 1, 9)))
    with pytest.raises(NotSubscribedError):
        asyncio.run(engine.start_interview("U1"))
