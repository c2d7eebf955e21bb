"""Leaderboards and winner selection.

All orderings share one key: most upvotes first, earlier submission first on
ties. Browsing leaderboards show every submission; winning requires
eligibility and a room seat.
"""
import math
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel
from sqlalchemy import func
from sqlmodel import Session, select

from ..models.challenge_submission import ChallengeSubmission
from ..models.competition_room import CompetitionRoom
from ..models.submission_upvote import SubmissionUpvote
from ..models.user import User, UserPublic
from .ledger import refresh_eligibility

LEADERBOARD_SHARE = 0.25


class RankScope(str, Enum):
    ROOM = "room"
    GLOBAL = "global"


class RankedSubmission(BaseModel):
    rank: Optional[int] = None
    submission_id: int
    challenge_id: int
    outfit_description: str
    generated_image_url: Optional[str]
    clothing_item_id: Optional[int]
    competition_room_id: Optional[int]
    room_number: Optional[int]
    is_eligible_for_competition: bool
    submitted_at: datetime
    upvote_count: int
    user: UserPublic


def _ranked_query(challenge_id: int):
    upvotes = func.count(SubmissionUpvote.upvote_id).label("upvote_count")
    return (
        select(ChallengeSubmission, upvotes, CompetitionRoom.room_number, User)
        .join(User, User.user_id == ChallengeSubmission.user_id)
        .outerjoin(SubmissionUpvote, SubmissionUpvote.submission_id == ChallengeSubmission.submission_id)
        .outerjoin(CompetitionRoom, CompetitionRoom.room_id == ChallengeSubmission.competition_room_id)
        .where(ChallengeSubmission.challenge_id == challenge_id)
        .group_by(ChallengeSubmission.submission_id, CompetitionRoom.room_number, User.user_id)
        .order_by(
            upvotes.desc(),
            ChallengeSubmission.submitted_at.asc(),
            ChallengeSubmission.submission_id.asc()
        )
    )


def _to_ranked(rows) -> List[RankedSubmission]:
    results = []
    for index, (submission, count, room_number, user) in enumerate(rows, start=1):
        results.append(RankedSubmission(
            rank=index,
            submission_id=submission.submission_id,
            challenge_id=submission.challenge_id,
            outfit_description=submission.outfit_description,
            generated_image_url=submission.generated_image_url,
            clothing_item_id=submission.clothing_item_id,
            competition_room_id=submission.competition_room_id,
            room_number=room_number,
            is_eligible_for_competition=submission.is_eligible_for_competition,
            submitted_at=submission.submitted_at,
            upvote_count=count,
            user=UserPublic(user_id=user.user_id, username=user.username, display_name=user.display_name)
        ))
    return results


def rank_submissions(
    session: Session,
    challenge_id: int,
    scope: RankScope,
    threshold: int,
    room_id: Optional[int] = None
) -> List[RankedSubmission]:
    refresh_eligibility(session, challenge_id, threshold)
    statement = _ranked_query(challenge_id)
    if scope == RankScope.ROOM:
        if room_id is None:
            raise ValueError("room_id is required for room scope")
        statement = statement.where(ChallengeSubmission.competition_room_id == room_id)
    return _to_ranked(session.exec(statement).all())


def top_winners(session: Session, challenge_id: int, threshold: int, n: int = 3) -> List[RankedSubmission]:
    refresh_eligibility(session, challenge_id, threshold)
    statement = (
        _ranked_query(challenge_id)
        .where(
            (ChallengeSubmission.is_eligible_for_competition == True) &  # noqa: E712
            (ChallengeSubmission.competition_room_id.is_not(None))
        )
        .limit(n)
    )
    return _to_ranked(session.exec(statement).all())


def top_submissions_for_challenge(session: Session, challenge_id: int, limit: int) -> List[RankedSubmission]:
    return _to_ranked(session.exec(_ranked_query(challenge_id).limit(limit)).all())


def leaderboard(session: Session, challenge_id: int, threshold: int) -> Tuple[List[RankedSubmission], int]:
    """Top quarter (at least one) of the eligible submissions, plus how many were eligible."""
    refresh_eligibility(session, challenge_id, threshold)
    eligible = _to_ranked(session.exec(
        _ranked_query(challenge_id)
        .where(ChallengeSubmission.is_eligible_for_competition == True)  # noqa: E712
    ).all())
    if not eligible:
        return [], 0
    cutoff = max(1, math.ceil(len(eligible) * LEADERBOARD_SHARE))
    return eligible[:cutoff], len(eligible)


def room_submissions(
    session: Session,
    challenge_id: int,
    room_id: int,
    threshold: int
) -> Tuple[List[RankedSubmission], List[RankedSubmission]]:
    """Qualified entries ranked by votes, unqualified ones listed by submission time."""
    everyone = rank_submissions(session, challenge_id, RankScope.ROOM, threshold, room_id=room_id)

    qualified = [s for s in everyone if s.is_eligible_for_competition]
    for rank, submission in enumerate(qualified, start=1):
        submission.rank = rank

    unqualified = sorted(
        (s for s in everyone if not s.is_eligible_for_competition),
        key=lambda s: (s.submitted_at, s.submission_id)
    )
    for submission in unqualified:
        submission.rank = None
    return qualified, unqualified
