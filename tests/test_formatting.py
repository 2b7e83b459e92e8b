from datetime import date

from conftest import LISBON, utc
from runtime.formatting import format_help, format_period_summary, format_standup_summary, format_status
from runtime.models import ScheduleSettings, StandupResponse, StandupStatusEntry


def response(username="bob", yesterday="", today="Wrote docs", blockers="Blocked on review",
             day=date(2026, 1, 5)):
    return StandupResponse(
        user_id=f"U-{username}", username=username, yesterday=yesterday, today=today,
        blockers=blockers, submitted_at=utc(day.year, day.month, day.day, 9, 42), submission_date=day,
    )


def test_summary_omits_skipped_yesterday():
    text = format_standup_summary(response(), LISBON)

    assert "Daily Standup - @bob" in text
    assert "Yesterday" not in text
    assert "*Today:*\nWrote docs" in text
    assert "*Blockers:*\nBlocked on review" in text
    assert "05 Jan 2026, 09:42" in text


def test_summary_omits_blank_blockers():
    text = format_standup_summary(response(yesterday="Reviews", blockers="   "), LISBON)
    assert "*Yesterday:*\nReviews" in text
    assert "Blockers" not in text


def test_status_report_groups_members():
    entries = [
        StandupStatusEntry("bob", True, False, submitted_at=utc(2026, 1, 5, 9, 42)),
        StandupStatusEntry("carol", False, False),
        StandupStatusEntry("dave", False, True, vacation_until=date(2026, 1, 9)),
    ]
    text = format_status(entries, LISBON)

    assert "• @bob (09:42)" in text
    assert "⏳ Pending:\n• @carol" in text
    assert "• @dave (until 09/01/2026)" in text
    assert "Participation: 1/2 members" in text


def test_period_summary_groups_by_day_newest_first():
    text = format_period_summary(
        [response("bob", day=date(2026, 1, 2)), response("carol", day=date(2026, 1, 5))],
        date(2025, 12, 30), date(2026, 1, 5), LISBON,
    )
    assert text.index("Monday 05/01/2026") < text.index("Friday 02/01/2026")


def test_help_lists_schedule():
    text = format_help(False, ScheduleSettings(standup_hour=8, standup_minute=30), "Europe/Lisbon")
    assert "08:30 your local time" in text


def test_vacationer_who_submitted_counts_as_participant():
    entries = [
        StandupStatusEntry("dave", True, True, vacation_until=date(2026, 1, 9),
                           submitted_at=utc(2026, 1, 5, 8, 15)),
    ]
    text = format_status(entries, LISBON)

    assert "• @dave (08:15)" in text
    assert "On Vacation" not in text
    assert "Participation: 1/1 members" in text
