import asyncio
from datetime import date

import pytest

from conftest import utc
from database import StandupDatabase, _to_postgres
from runtime.errors import TransientIOError
from runtime.models import ScheduleSettings, StandupResponse

MONDAY = date(2026, 1, 5)


def standup(user_id="U1", username="bob", day=MONDAY, today="work", hour=9):
    return StandupResponse(
        user_id=user_id, username=username, yesterday="", today=today, blockers="",
        submitted_at=utc(day.year, day.month, day.day, hour, 0), submission_date=day,
    )


def test_subscription_lifecycle(db):
    async def scenario():
        await db.add_subscriber("U1", "bob")
        assert await db.is_subscribed("U1")
        sub = await db.get_subscriber("U1")
        assert sub.timezone == "Europe/Lisbon"
        assert not sub.is_on_vacation

        # Re-subscribing keeps the stored timezone
        await db.set_user_timezone("U1", "Asia/Tokyo")
        await db.add_subscriber("U1", "bobby")
        sub = await db.get_subscriber("U1")
        assert (sub.username, sub.timezone) == ("bobby", "Asia/Tokyo")

        await db.remove_subscriber("U1")
        assert not await db.is_subscribed("U1")
        assert await db.get_subscriber("U1") is None

    asyncio.run(scenario())


def test_active_subscribers_respect_vacation_end(db):
    async def scenario():
        for user_id, name in (("U1", "bob"), ("U2", "carol"), ("U3", "dave")):
            await db.add_subscriber(user_id, name)
        await db.set_vacation("U2", date(2026, 1, 9))
        await db.set_vacation("U3", date(2026, 1, 4))
        active = await db.get_active_subscribers(MONDAY)

        await db.clear_vacation("U2")
        back = await db.get_subscriber("U2")
        return active, back

    active, back = asyncio.run(scenario())
    assert [s.user_id for s in active] == ["U1", "U3"]
    assert not back.is_on_vacation
    assert back.vacation_until is None


def test_admin_requires_subscription(db):
    async def scenario():
        assert not await db.is_admin("U1")
        await db.add_subscriber("U1", "alice")
        await db.add_subscriber("U2", "bob")
        return await db.is_admin("U1"), await db.is_admin("U2")

    assert asyncio.run(scenario()) == (True, False)


def test_settings_seeded_and_updated(tmp_path):
    path = str(tmp_path / "settings.db")
    db = StandupDatabase(db_path=path, default_settings=ScheduleSettings(8, 45, False, 3))
    assert asyncio.run(db.get_schedule_settings()) == ScheduleSettings(8, 45, False, 3)

    async def update():
        await db.set_standup_time(10, 15)
        await db.set_late_reminder_enabled(True)
        await db.set_late_reminder_hours(6)

    asyncio.run(update())

    # Reopening must not overwrite what an admin changed
    reopened = StandupDatabase(db_path=path)
    assert asyncio.run(reopened.get_schedule_settings()) == ScheduleSettings(10, 15, True, 6)


def test_same_day_standup_is_replaced(db):
    async def scenario():
        await db.save_standup(standup(today="first", hour=9))
        await db.save_standup(standup(today="second", hour=11))
        await db.save_standup(standup(day=date(2026, 1, 6), today="tuesday"))
        return await db.get_standups_for_day(MONDAY), await db.get_user_standup_for_day("U1", MONDAY)

    day, mine = asyncio.run(scenario())
    assert [s.today for s in day] == ["second"]
    assert mine.submitted_at == utc(2026, 1, 5, 11, 0)


def test_standups_between_and_cleanup(db):
    async def scenario():
        for day in (date(2025, 12, 28), date(2026, 1, 2), MONDAY):
            await db.save_standup(standup(day=day))
        between = await db.get_standups_between(date(2026, 1, 1), MONDAY)
        deleted = await db.cleanup_old_standups(date(2025, 12, 29))
        remaining = await db.get_standups_between(date(2025, 1, 1), MONDAY)
        return between, deleted, remaining

    between, deleted, remaining = asyncio.run(scenario())
    assert [s.submission_date for s in between] == [MONDAY, date(2026, 1, 2)]
    assert deleted == 1
    assert len(remaining) == 2


def test_late_reminder_claimed_once(db):
    async def scenario():
        first = await db.claim_late_reminder("U1", MONDAY, utc(2026, 1, 5, 13, 0))
        second = await db.claim_late_reminder("U1", MONDAY, utc(2026, 1, 5, 13, 1))
        await db.release_late_reminder("U1", MONDAY)
        third = await db.claim_late_reminder("U1", MONDAY, utc(2026, 1, 5, 13, 2))
        return first, second, third

    assert asyncio.run(scenario()) == (True, False, True)

    records = asyncio.run(db.get_late_reminders(MONDAY))
    assert [(r.user_id, r.sent_date, r.sent_at) for r in records] == [("U1", MONDAY, utc(2026, 1, 5, 13, 2))]


def test_standup_status_for_day(db):
    async def scenario():
        await db.add_subscriber("U1", "bob")
        await db.add_subscriber("U2", "carol")
        await db.add_subscriber("U3", "dave")
        await db.set_vacation("U3", date(2026, 1, 9))
        await db.save_standup(standup())
        return await db.get_standup_status(MONDAY)

    entries = {e.username: e for e in asyncio.run(scenario())}
    assert entries["bob"].has_submitted
    assert not entries["carol"].has_submitted
    assert entries["dave"].is_on_vacation
    assert entries["dave"].vacation_until == date(2026, 1, 9)


def test_failures_surface_as_transient_errors(tmp_path):
    db = StandupDatabase(db_path=str(tmp_path / "broken.db"))
    db.db_path = str(tmp_path / "missing" / "dir" / "broken.db")

    with pytest.raises(TransientIOError):
        asyncio.run(db.get_all_subscribers())


def test_placeholders_rewritten_for_postgres():
    assert _to_postgres("SELECT * FROM t WHERE a = ? AND b = ?") == "SELECT * FROM t WHERE a = $1 AND b = $2"
