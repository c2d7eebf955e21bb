"""Challenge time windows.

Every comparison happens in the configured challenge time zone so that the
calendar day a challenge belongs to is the same for every caller.
"""
from datetime import date, datetime, time, timezone
from enum import Enum
from typing import Optional, Union
from zoneinfo import ZoneInfo

from pydantic import BaseModel
from sqlmodel import Session, select

from ..config import Settings
from ..models.challenge import Challenge


class Phase(str, Enum):
    SUBMISSION = "submission"
    VOTING = "voting"
    ENDED = "ended"


class PhaseState(BaseModel):
    phase: Phase
    submissions_open: bool
    voting_open: bool
    challenge_ended: bool
    time_remaining_ms: int
    revealed: bool = True


class NotRevealed(BaseModel):
    time_until_reveal_ms: int


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def challenge_zone(settings: Settings) -> ZoneInfo:
    return ZoneInfo(settings.challenge_timezone)


def as_utc(value: datetime) -> datetime:
    # Some backends hand timestamps back without tzinfo; they are stored in UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def local_today(now: datetime, tz: ZoneInfo) -> date:
    return as_utc(now).astimezone(tz).date()


def day_start(day: date, tz: ZoneInfo) -> datetime:
    return datetime.combine(day, time.min, tzinfo=tz)


def _millis(delta) -> int:
    return max(0, int(delta.total_seconds() * 1000))


def submission_opens_at(challenge: Challenge, tz: ZoneInfo) -> datetime:
    if challenge.competition_start:
        return as_utc(challenge.competition_start).astimezone(tz)
    return day_start(challenge.challenge_date, tz)


def voting_closes_at(challenge: Challenge, tz: ZoneInfo) -> datetime:
    # Challenges created before competition_end existed close voting with submissions
    closes = challenge.competition_end or challenge.submission_deadline
    return as_utc(closes).astimezone(tz)


def resolve_phase(
    challenge: Challenge,
    now: datetime,
    tz: ZoneInfo,
    reveal_early: bool = False
) -> Union[PhaseState, NotRevealed]:
    """Work out where a challenge is in its submission -> voting -> ended cycle.

    Before ``competition_start`` the challenge is hidden: callers get a
    ``NotRevealed`` carrying only the time until reveal, unless
    ``reveal_early`` is set (admin preview).
    """
    now_local = as_utc(now).astimezone(tz)
    deadline = as_utc(challenge.submission_deadline).astimezone(tz)
    closes = voting_closes_at(challenge, tz)

    revealed = True
    if challenge.competition_start:
        start = as_utc(challenge.competition_start).astimezone(tz)
        if now_local < start:
            if not reveal_early:
                return NotRevealed(time_until_reveal_ms=_millis(start - now_local))
            revealed = False

    submissions_open = now_local < deadline
    voting_open = now_local < closes

    if submissions_open:
        phase = Phase.SUBMISSION
        remaining = _millis(deadline - now_local)
    elif voting_open:
        phase = Phase.VOTING
        remaining = _millis(closes - now_local)
    else:
        phase = Phase.ENDED
        remaining = 0

    return PhaseState(
        phase=phase,
        submissions_open=submissions_open,
        voting_open=voting_open,
        challenge_ended=phase == Phase.ENDED,
        time_remaining_ms=remaining,
        revealed=revealed,
    )


def challenge_for_day(session: Session, day: date) -> Optional[Challenge]:
    return session.exec(
        select(Challenge).where(Challenge.challenge_date == day)
    ).first()


def current_challenge(session: Session, now: datetime, tz: ZoneInfo) -> Optional[Challenge]:
    return challenge_for_day(session, local_today(now, tz))
