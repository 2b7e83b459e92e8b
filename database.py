"""
Database module for the standup bot: subscribers, standups, settings and
late reminders. Supports both SQLite (development) and PostgreSQL (production).

Dates are stored as ISO strings (YYYY-MM-DD) and timestamps as ISO strings with
offset, so the same queries work on both backends.
"""
import os
import sqlite3
import asyncio
import logging
from typing import Optional, Dict, Any, List, Iterable, Tuple
from datetime import date, datetime

import asyncpg

from runtime.errors import TransientIOError
from runtime.models import Subscriber, StandupResponse, ScheduleSettings, StandupStatusEntry, LateReminderRecord

logger = logging.getLogger(__name__)

# Standard env var used by Heroku/Railway
DATABASE_URL = os.getenv('DATABASE_URL')

DEFAULT_TIMEZONE = 'Europe/Lisbon'

SQLITE_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS subscriptions (
        user_id TEXT PRIMARY KEY,
        username TEXT NOT NULL,
        timezone TEXT NOT NULL,
        is_on_vacation INTEGER NOT NULL DEFAULT 0,
        vacation_until TEXT,
        subscribed_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS standups (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        username TEXT NOT NULL,
        yesterday TEXT NOT NULL DEFAULT '',
        today TEXT NOT NULL,
        blockers TEXT NOT NULL DEFAULT '',
        submitted_at TEXT NOT NULL,
        submission_date TEXT NOT NULL,
        UNIQUE (user_id, submission_date)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS settings (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS late_reminders (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        sent_date TEXT NOT NULL,
        sent_at TEXT NOT NULL,
        UNIQUE (user_id, sent_date)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_standups_submission_date ON standups(submission_date)",
]

POSTGRES_SCHEMA = [
    statement.replace("INTEGER PRIMARY KEY AUTOINCREMENT", "SERIAL PRIMARY KEY")
    for statement in SQLITE_SCHEMA
]

SETTINGS_KEYS = ('standup_hour', 'standup_minute', 'late_reminder_enabled', 'late_reminder_hours')


def _to_postgres(query: str) -> str:
    """Rewrite ? placeholders into asyncpg's $1, $2, ..."""
    parts = query.split('?')
    rewritten = parts[0]
    for index, part in enumerate(parts[1:], start=1):
        rewritten += f"${index}{part}"
    return rewritten


def _parse_date(value: Any) -> Optional[date]:
    if value is None or value == '':
        return None
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value))


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


class StandupDatabase:
    """Participant registry and response store"""

    def __init__(self, db_path: str = "standup.db", database_url: Optional[str] = None,
                 admin_usernames: Iterable[str] = (), default_settings: Optional[ScheduleSettings] = None,
                 default_timezone: str = DEFAULT_TIMEZONE):
        self.db_path = db_path
        self.db_url = database_url
        self.use_postgres = bool(database_url)
        self.pool = None
        self.admin_usernames = frozenset(admin_usernames)
        self.default_settings = default_settings or ScheduleSettings()
        self.default_timezone = default_timezone

        if self.use_postgres:
            # PostgreSQL initialization is async, handled in _init_postgres
            logger.info("Using PostgreSQL database")
        else:
            logger.info("Using SQLite database")
            self._init_sqlite()

    async def initialize(self):
        """Async initialization for PostgreSQL"""
        if self.use_postgres and not self.pool:
            await self._init_postgres()

    def _default_settings_rows(self) -> List[Tuple[str, str]]:
        settings = self.default_settings
        return [
            ('standup_hour', str(settings.standup_hour)),
            ('standup_minute', str(settings.standup_minute)),
            ('late_reminder_enabled', '1' if settings.late_reminder_enabled else '0'),
            ('late_reminder_hours', str(settings.late_reminder_hours)),
        ]

    def _init_sqlite(self):
        """Initialize SQLite database and create tables if they don't exist"""
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()
        for statement in SQLITE_SCHEMA:
            cursor.execute(statement)

        # Seed settings without touching values an admin already changed
        cursor.executemany(
            "INSERT INTO settings (key, value) VALUES (?, ?) ON CONFLICT(key) DO NOTHING",
            self._default_settings_rows()
        )
        conn.commit()
        conn.close()
        logger.info(f"SQLite database initialized at {self.db_path}")

    async def _init_postgres(self):
        """Initialize PostgreSQL database and create tables if they don't exist"""
        # Convert DATABASE_URL to asyncpg format if needed (for Heroku)
        db_url = self.db_url
        if db_url.startswith('postgres://'):
            db_url = db_url.replace('postgres://', 'postgresql://', 1)

        self.pool = await asyncpg.create_pool(db_url, min_size=1, max_size=10)

        async with self.pool.acquire() as conn:
            for statement in POSTGRES_SCHEMA:
                await conn.execute(statement)
            await conn.executemany(
                "INSERT INTO settings (key, value) VALUES ($1, $2) ON CONFLICT(key) DO NOTHING",
                self._default_settings_rows()
            )

        logger.info("PostgreSQL database initialized")

    # ========================= QUERY HELPERS =========================

    async def _execute(self, *statements: Tuple[str, tuple]) -> List[int]:
        """Run write statements in one transaction, returning affected row counts"""
        try:
            if self.use_postgres:
                return await self._execute_postgres(statements)
            loop = asyncio.get_event_loop()
            return await loop.run_in_executor(None, self._execute_sqlite, statements)
        except Exception as e:
            logger.error(f"Database write failed: {e}")
            raise TransientIOError() from e

    def _execute_sqlite(self, statements) -> List[int]:
        conn = sqlite3.connect(self.db_path)
        try:
            cursor = conn.cursor()
            counts = []
            for query, params in statements:
                cursor.execute(query, params)
                counts.append(cursor.rowcount)
            conn.commit()
            return counts
        finally:
            conn.close()

    async def _execute_postgres(self, statements) -> List[int]:
        await self.initialize()  # Ensure pool is created

        counts = []
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                for query, params in statements:
                    result = await conn.execute(_to_postgres(query), *params)
                    # Status strings look like "DELETE 3" / "INSERT 0 1"
                    counts.append(int(result.split()[-1]) if result else 0)
        return counts

    async def _fetch(self, query: str, params: tuple = ()) -> List[Dict[str, Any]]:
        try:
            if self.use_postgres:
                return await self._fetch_postgres(query, params)
            loop = asyncio.get_event_loop()
            return await loop.run_in_executor(None, self._fetch_sqlite, query, params)
        except Exception as e:
            logger.error(f"Database read failed: {e}")
            raise TransientIOError() from e

    def _fetch_sqlite(self, query: str, params: tuple) -> List[Dict[str, Any]]:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return [dict(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    async def _fetch_postgres(self, query: str, params: tuple) -> List[Dict[str, Any]]:
        await self.initialize()

        async with self.pool.acquire() as conn:
            rows = await conn.fetch(_to_postgres(query), *params)
            return [dict(row) for row in rows]

    async def _fetch_one(self, query: str, params: tuple = ()) -> Optional[Dict[str, Any]]:
        rows = await self._fetch(query, params)
        return rows[0] if rows else None

    def _row_to_subscriber(self, row: Dict[str, Any]) -> Subscriber:
        return Subscriber(
            user_id=row['user_id'],
            username=row['username'],
            timezone=row.get('timezone') or self.default_timezone,
            is_on_vacation=bool(row.get('is_on_vacation')),
            vacation_until=_parse_date(row.get('vacation_until')),
            subscribed_at=_parse_timestamp(row.get('subscribed_at')),
        )

    @staticmethod
    def _row_to_standup(row: Dict[str, Any]) -> StandupResponse:
        return StandupResponse(
            user_id=row['user_id'],
            username=row['username'],
            yesterday=row.get('yesterday') or '',
            today=row['today'],
            blockers=row.get('blockers') or '',
            submitted_at=_parse_timestamp(row['submitted_at']),
            submission_date=_parse_date(row['submission_date']),
        )

    # ========================= SUBSCRIPTION METHODS =========================

    async def add_subscriber(self, user_id: str, username: str, timezone: Optional[str] = None,
                             subscribed_at: Optional[datetime] = None) -> None:
        """Create or refresh a subscription"""
        subscribed_at = subscribed_at or datetime.now().astimezone()
        await self._execute((
            """
            INSERT INTO subscriptions (user_id, username, timezone, is_on_vacation, vacation_until, subscribed_at)
            VALUES (?, ?, ?, 0, NULL, ?)
            ON CONFLICT(user_id) DO UPDATE SET username = excluded.username
            """,
            (user_id, username, timezone or self.default_timezone, subscribed_at.isoformat())
        ))
        logger.info(f"Subscribed user {user_id} (@{username})")

    async def remove_subscriber(self, user_id: str) -> None:
        await self._execute(("DELETE FROM subscriptions WHERE user_id = ?", (user_id,)))
        logger.info(f"Unsubscribed user {user_id}")

    async def is_subscribed(self, user_id: str) -> bool:
        row = await self._fetch_one("SELECT COUNT(*) AS count FROM subscriptions WHERE user_id = ?", (user_id,))
        return bool(row and row['count'] > 0)

    async def get_subscriber(self, user_id: str) -> Optional[Subscriber]:
        row = await self._fetch_one("SELECT * FROM subscriptions WHERE user_id = ?", (user_id,))
        return self._row_to_subscriber(row) if row else None

    async def get_all_subscribers(self) -> List[Subscriber]:
        rows = await self._fetch("SELECT * FROM subscriptions ORDER BY username")
        return [self._row_to_subscriber(row) for row in rows]

    async def get_active_subscribers(self, today: date) -> List[Subscriber]:
        """Subscribers not on vacation; an expired vacation counts as active"""
        rows = await self._fetch(
            """
            SELECT * FROM subscriptions
            WHERE is_on_vacation = 0
               OR (vacation_until IS NOT NULL AND vacation_until < ?)
            ORDER BY username
            """,
            (today.isoformat(),)
        )
        return [self._row_to_subscriber(row) for row in rows]

    async def set_user_timezone(self, user_id: str, timezone: str) -> None:
        await self._execute(("UPDATE subscriptions SET timezone = ? WHERE user_id = ?", (timezone, user_id)))
        logger.info(f"Set timezone for user {user_id} to {timezone}")

    async def get_user_timezone(self, user_id: str) -> str:
        row = await self._fetch_one("SELECT timezone FROM subscriptions WHERE user_id = ?", (user_id,))
        return (row or {}).get('timezone') or self.default_timezone

    async def set_vacation(self, user_id: str, until: date) -> None:
        await self._execute((
            "UPDATE subscriptions SET is_on_vacation = 1, vacation_until = ? WHERE user_id = ?",
            (until.isoformat(), user_id)
        ))
        logger.info(f"Vacation mode enabled for user {user_id} until {until.isoformat()}")

    async def clear_vacation(self, user_id: str) -> None:
        await self._execute((
            "UPDATE subscriptions SET is_on_vacation = 0, vacation_until = NULL WHERE user_id = ?",
            (user_id,)
        ))
        logger.info(f"Vacation mode disabled for user {user_id}")

    async def is_admin(self, user_id: str) -> bool:
        """Admins are subscribers whose handle is in the configured set"""
        row = await self._fetch_one("SELECT username FROM subscriptions WHERE user_id = ?", (user_id,))
        return bool(row) and row['username'] in self.admin_usernames

    # ========================= SETTINGS METHODS =========================

    async def get_schedule_settings(self) -> ScheduleSettings:
        rows = await self._fetch("SELECT key, value FROM settings")
        values = {row['key']: row['value'] for row in rows}
        defaults = self.default_settings
        return ScheduleSettings(
            standup_hour=int(values.get('standup_hour', defaults.standup_hour)),
            standup_minute=int(values.get('standup_minute', defaults.standup_minute)),
            late_reminder_enabled=values.get(
                'late_reminder_enabled', '1' if defaults.late_reminder_enabled else '0'
            ) == '1',
            late_reminder_hours=int(values.get('late_reminder_hours', defaults.late_reminder_hours)),
        )

    def _upsert_setting(self, key: str, value: str) -> Tuple[str, tuple]:
        return (
            "INSERT INTO settings (key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
            (key, value)
        )

    async def set_standup_time(self, hour: int, minute: int) -> None:
        # Both values in one transaction so readers never see half an update
        await self._execute(
            self._upsert_setting('standup_hour', str(hour)),
            self._upsert_setting('standup_minute', str(minute)),
        )

    async def set_late_reminder_enabled(self, enabled: bool) -> None:
        await self._execute(self._upsert_setting('late_reminder_enabled', '1' if enabled else '0'))

    async def set_late_reminder_hours(self, hours: int) -> None:
        await self._execute(self._upsert_setting('late_reminder_hours', str(hours)))

    # ========================= STANDUP METHODS =========================

    async def save_standup(self, response: StandupResponse) -> None:
        """Store a standup, replacing any earlier one from the same day"""
        await self._execute((
            """
            INSERT INTO standups (user_id, username, yesterday, today, blockers, submitted_at, submission_date)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(user_id, submission_date) DO UPDATE SET
                username = excluded.username,
                yesterday = excluded.yesterday,
                today = excluded.today,
                blockers = excluded.blockers,
                submitted_at = excluded.submitted_at
            """,
            (
                response.user_id, response.username, response.yesterday or '', response.today,
                response.blockers or '', response.submitted_at.isoformat(),
                response.submission_date.isoformat()
            )
        ))
        logger.info(f"Saved standup for user {response.user_id} on {response.submission_date.isoformat()}")

    async def get_standups_for_day(self, day: date) -> List[StandupResponse]:
        rows = await self._fetch(
            "SELECT * FROM standups WHERE submission_date = ? ORDER BY submitted_at DESC",
            (day.isoformat(),)
        )
        return [self._row_to_standup(row) for row in rows]

    async def get_user_standup_for_day(self, user_id: str, day: date) -> Optional[StandupResponse]:
        row = await self._fetch_one(
            "SELECT * FROM standups WHERE user_id = ? AND submission_date = ?",
            (user_id, day.isoformat())
        )
        return self._row_to_standup(row) if row else None

    async def get_standups_between(self, start: date, end: date) -> List[StandupResponse]:
        """Standups submitted between two days, both inclusive"""
        rows = await self._fetch(
            """
            SELECT * FROM standups
            WHERE submission_date >= ? AND submission_date <= ?
            ORDER BY submission_date DESC, submitted_at DESC
            """,
            (start.isoformat(), end.isoformat())
        )
        return [self._row_to_standup(row) for row in rows]

    async def get_standup_status(self, day: date) -> List[StandupStatusEntry]:
        """Every subscriber with whether they submitted on the given day"""
        subscribers = await self.get_all_subscribers()
        standups = {s.user_id: s for s in await self.get_standups_for_day(day)}
        return [
            StandupStatusEntry(
                username=sub.username,
                has_submitted=sub.user_id in standups,
                is_on_vacation=sub.is_on_vacation_on(day),
                vacation_until=sub.vacation_until if sub.is_on_vacation_on(day) else None,
                submitted_at=standups[sub.user_id].submitted_at if sub.user_id in standups else None,
            )
            for sub in subscribers
        ]

    async def cleanup_old_standups(self, cutoff: date) -> int:
        """Delete standups submitted before the cutoff day"""
        (count,) = await self._execute((
            "DELETE FROM standups WHERE submission_date < ?", (cutoff.isoformat(),)
        ))
        if count > 0:
            logger.info(f"Cleaned up {count} standups older than {cutoff.isoformat()}")
        return count

    # ========================= LATE REMINDER METHODS =========================

    async def claim_late_reminder(self, user_id: str, day: date, sent_at: datetime) -> bool:
        """Record a late reminder; False when one already exists for that day"""
        (count,) = await self._execute((
            """
            INSERT INTO late_reminders (user_id, sent_date, sent_at) VALUES (?, ?, ?)
            ON CONFLICT(user_id, sent_date) DO NOTHING
            """,
            (user_id, day.isoformat(), sent_at.isoformat())
        ))
        return count > 0

    async def release_late_reminder(self, user_id: str, day: date) -> None:
        await self._execute((
            "DELETE FROM late_reminders WHERE user_id = ? AND sent_date = ?",
            (user_id, day.isoformat())
        ))

    async def has_late_reminder(self, user_id: str, day: date) -> bool:
        row = await self._fetch_one(
            "SELECT COUNT(*) AS count FROM late_reminders WHERE user_id = ? AND sent_date = ?",
            (user_id, day.isoformat())
        )
        return bool(row and row['count'] > 0)

    async def get_late_reminders(self, day: date) -> List[LateReminderRecord]:
        rows = await self._fetch(
            "SELECT user_id, sent_date, sent_at FROM late_reminders WHERE sent_date = ? ORDER BY sent_at",
            (day.isoformat(),)
        )
        return [
            LateReminderRecord(
                user_id=row['user_id'],
                sent_date=_parse_date(row['sent_date']),
                sent_at=_parse_timestamp(row['sent_at']),
            )
            for row in rows
        ]

    async def cleanup_old_late_reminders(self, today: date) -> int:
        (count,) = await self._execute((
            "DELETE FROM late_reminders WHERE sent_date < ?", (today.isoformat(),)
        ))
        if count > 0:
            logger.info(f"Cleaned up {count} late reminder records")
        return count

    async def close(self):
        """Close database connections"""
        if self.use_postgres and self.pool:
            await self.pool.close()


# Global database instance, created on first use
_standup_db: Optional[StandupDatabase] = None


def get_database(config=None) -> StandupDatabase:
    """Get or create the global database instance"""
    global _standup_db
    if _standup_db is None:
        if config is None:
            _standup_db = StandupDatabase(database_url=DATABASE_URL)
        else:
            _standup_db = StandupDatabase(
                db_path=config.db_path,
                database_url=config.database_url,
                admin_usernames=config.admin_usernames,
                default_settings=config.default_settings,
                default_timezone=config.reference_timezone,
            )
    return _standup_db
