"""
Standup Interview State Machine

One InterviewSession per participant with an open standup. The registry makes
"is a session open?" + "open one" a single compare-and-set step, and each
session carries its own lock so only one event advances it at a time while
events for other participants proceed independently.

Stages: AWAITING_YESTERDAY -> AWAITING_TODAY -> AWAITING_BLOCKERS -> COMPLETED
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import IntEnum
from typing import Callable, Dict, List, Optional
from zoneinfo import ZoneInfo

from .errors import (
    ConflictError, NotSubscribedError, SessionAlreadyOpenError,
    SkipNotAllowedError, StandupError, TransientIOError,
)
from .formatting import format_standup_summary
from .jobs import utc_now
from .models import StandupResponse
from .transport import StandupTransport

logger = logging.getLogger(__name__)


class InterviewStage(IntEnum):
    AWAITING_YESTERDAY = 0
    AWAITING_TODAY = 1
    AWAITING_BLOCKERS = 2
    COMPLETED = 3


QUESTIONS = (
    "What did you work on yesterday? (use `/standup skip` if Monday)",
    "What will you work on today?",
    "Are there any blockers or impediments? (optional - use `/standup skip` if none)",
)

SKIPPABLE_STAGES = frozenset({InterviewStage.AWAITING_YESTERDAY, InterviewStage.AWAITING_BLOCKERS})

SCHEDULED_INTRO = "⏰ Time for your daily standup!"
MANUAL_INTRO = "📋 Starting your daily standup..."
SUBMITTED_MESSAGE = "Thank you! Your standup has been submitted."
COMPLETION_FAILED_MESSAGE = (
    "❌ Sorry, there was an error processing your response. Please try again later."
)


@dataclass
class InterviewSession:
    """In-memory progress of one participant's standup"""
    user_id: str
    username: str
    opened_at: datetime
    answers: List[str] = field(default_factory=lambda: ["", "", ""])
    stage: InterviewStage = InterviewStage.AWAITING_YESTERDAY
    closed: bool = False
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    @property
    def current_question(self) -> Optional[str]:
        if self.stage == InterviewStage.COMPLETED:
            return None
        return QUESTIONS[self.stage]

    @property
    def is_complete(self) -> bool:
        return self.stage == InterviewStage.COMPLETED

    def answer(self, text: str) -> InterviewStage:
        """Record free text for the current question and advance"""
        if self.is_complete:
            raise ConflictError("This standup is already complete.")
        self.answers[self.stage] = text
        self.stage = InterviewStage(self.stage + 1)
        return self.stage

    def skip(self) -> InterviewStage:
        """Leave the current question blank, if it is optional"""
        if self.stage not in SKIPPABLE_STAGES:
            raise SkipNotAllowedError()
        return self.answer("")

    def to_response(self, submitted_at: datetime, submission_date: date) -> StandupResponse:
        yesterday, today, blockers = self.answers
        return StandupResponse(
            user_id=self.user_id,
            username=self.username,
            yesterday=yesterday,
            today=today,
            blockers=blockers,
            submitted_at=submitted_at,
            submission_date=submission_date,
        )


class SessionRegistry:
    """Live sessions keyed by participant"""

    def __init__(self):
        self._sessions: Dict[str, InterviewSession] = {}
        self._guard = asyncio.Lock()

    def get(self, user_id: str) -> Optional[InterviewSession]:
        return self._sessions.get(user_id)

    def has(self, user_id: str) -> bool:
        return user_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    async def open(self, user_id: str, username: str, opened_at: datetime) -> InterviewSession:
        """Create a session unless one is already live; never replaces"""
        async with self._guard:
            if user_id in self._sessions:
                raise SessionAlreadyOpenError()
            session = InterviewSession(user_id=user_id, username=username, opened_at=opened_at)
            self._sessions[user_id] = session
            return session

    async def close(self, session: InterviewSession) -> None:
        async with self._guard:
            session.closed = True
            if self._sessions.get(session.user_id) is session:
                del self._sessions[session.user_id]


class InterviewEngine:
    """Opens, advances and completes standup interviews"""

    def __init__(self, db, transport: StandupTransport, reference_tz: ZoneInfo,
                 registry: Optional[SessionRegistry] = None,
                 now_fn: Callable[[], datetime] = utc_now):
        self.db = db
        self.transport = transport
        self.reference_tz = reference_tz
        self.registry = registry or SessionRegistry()
        self.now_fn = now_fn

    def has_session(self, user_id: str) -> bool:
        return self.registry.has(user_id)

    async def start_interview(self, user_id: str, username: Optional[str] = None,
                              scheduled: bool = False) -> InterviewSession:
        """
        Open a standup for a participant and ask the first question.

        Manual starts require an active subscription; scheduled starts come
        from the trigger clock, which only considers active subscribers.
        """
        if self.registry.has(user_id):
            raise SessionAlreadyOpenError()

        if not scheduled:
            subscriber = await self.db.get_subscriber(user_id)
            if subscriber is None:
                raise NotSubscribedError(
                    "You need to `/standup subscribe` first before you can submit standups."
                )
            today = self.now_fn().astimezone(self.reference_tz).date()
            if subscriber.is_on_vacation_on(today):
                raise NotSubscribedError(
                    "🏖 You are on vacation mode. Use `/standup back` first to submit standups."
                )
            username = username or subscriber.username

        session = await self.registry.open(user_id, username or user_id, self.now_fn())
        logger.info(f"Opened standup for user {user_id} ({'scheduled' if scheduled else 'manual'})")

        try:
            await self.transport.send_to_participant(user_id, SCHEDULED_INTRO if scheduled else MANUAL_INTRO)
            await self.transport.send_to_participant(user_id, QUESTIONS[0])
        except Exception as e:
            # Nobody can answer a question that never arrived
            await self.registry.close(session)
            logger.error(f"Failed to start standup for user {user_id}: {e}")
            if isinstance(e, StandupError):
                raise
            raise TransientIOError() from e

        return session

    async def handle_answer(self, user_id: str, text: str) -> Optional[StandupResponse]:
        """Free text from a participant; returns the response once complete"""
        session = self.registry.get(user_id)
        if session is None:
            return None

        async with session.lock:
            if session.closed:
                return None
            session.answer(text)
            return await self._advance(session)

    async def handle_skip(self, user_id: str) -> Optional[StandupResponse]:
        """Skip request; raises SkipNotAllowedError on the mandatory question"""
        session = self.registry.get(user_id)
        if session is None:
            return None

        async with session.lock:
            if session.closed:
                return None
            session.skip()
            return await self._advance(session)

    async def _advance(self, session: InterviewSession) -> Optional[StandupResponse]:
        if session.is_complete:
            return await self._complete(session)

        logger.info(f"User {session.user_id} advanced to {session.stage.name}")
        try:
            await self.transport.send_to_participant(session.user_id, session.current_question)
        except Exception as e:
            logger.error(f"Failed to send next question to user {session.user_id}: {e}")
            if isinstance(e, StandupError):
                raise
            raise TransientIOError() from e
        return None

    async def _complete(self, session: InterviewSession) -> StandupResponse:
        """Persist, post to the channel, then drop the session whatever happens"""
        now = self.now_fn()
        response = session.to_response(now, now.astimezone(self.reference_tz).date())

        failure: Optional[Exception] = None
        try:
            await self.db.save_standup(response)
            await self.transport.send_to_channel(format_standup_summary(response, self.reference_tz))
        except Exception as e:
            failure = e
        finally:
            await self.registry.close(session)

        if failure is not None:
            logger.error(f"Error completing standup for user {session.user_id}: {failure}")
            raise TransientIOError(COMPLETION_FAILED_MESSAGE) from failure

        logger.info(f"Standup completed for user {session.user_id}")
        try:
            await self.transport.send_to_participant(session.user_id, SUBMITTED_MESSAGE)
        except Exception as e:
            logger.warning(f"Standup saved but confirmation to user {session.user_id} failed: {e}")

        return response
