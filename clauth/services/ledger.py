"""Challenge submissions, upvotes and competition eligibility."""
import logging
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel
from sqlalchemy import distinct, func
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from ..config import Settings
from ..errors import Conflict, DuplicateSubmission, NotFound, ValidationError
from ..models.challenge import Challenge
from ..models.challenge_submission import ChallengeSubmission, ChallengeSubmissionCreate
from ..models.item import ClothingItem
from ..models.submission_upvote import SubmissionUpvote
from .phase import NotRevealed, as_utc, challenge_zone, resolve_phase, submission_opens_at
from .rooms import assign_participant

logger = logging.getLogger(__name__)


class UpvoteResult(BaseModel):
    submission_id: int
    upvoted: bool
    upvote_count: int
    votes_cast: int
    is_eligible_for_competition: bool


def get_user_submission(session: Session, challenge_id: int, user_id: int) -> Optional[ChallengeSubmission]:
    return session.exec(
        select(ChallengeSubmission)
        .where(
            (ChallengeSubmission.challenge_id == challenge_id) &
            (ChallengeSubmission.user_id == user_id)
        )
    ).first()


def upvote_count(session: Session, submission_id: int) -> int:
    return session.exec(
        select(func.count(SubmissionUpvote.upvote_id))
        .where(SubmissionUpvote.submission_id == submission_id)
    ).one()


def votes_cast(session: Session, challenge_id: int, user_id: int) -> int:
    """Distinct submissions by other users that this user has upvoted in the challenge."""
    return session.exec(
        select(func.count(distinct(SubmissionUpvote.submission_id)))
        .join(ChallengeSubmission, ChallengeSubmission.submission_id == SubmissionUpvote.submission_id)
        .where(
            (SubmissionUpvote.user_id == user_id) &
            (ChallengeSubmission.challenge_id == challenge_id) &
            (ChallengeSubmission.user_id != user_id)
        )
    ).one()


def is_eligible(session: Session, challenge_id: int, user_id: int, threshold: int) -> bool:
    return votes_cast(session, challenge_id, user_id) >= threshold


def refresh_eligibility(session: Session, challenge_id: int, threshold: int) -> None:
    """Recompute the cached eligibility flag of every submission in the challenge."""
    rows = session.exec(
        select(SubmissionUpvote.user_id, func.count(distinct(SubmissionUpvote.submission_id)))
        .join(ChallengeSubmission, ChallengeSubmission.submission_id == SubmissionUpvote.submission_id)
        .where(
            (ChallengeSubmission.challenge_id == challenge_id) &
            (ChallengeSubmission.user_id != SubmissionUpvote.user_id)
        )
        .group_by(SubmissionUpvote.user_id)
    ).all()
    eligible_users = {user_id for user_id, count in rows if count >= threshold}

    submissions = session.exec(
        select(ChallengeSubmission).where(ChallengeSubmission.challenge_id == challenge_id)
    ).all()
    changed = False
    for submission in submissions:
        eligible = submission.user_id in eligible_users
        if submission.is_eligible_for_competition != eligible:
            submission.is_eligible_for_competition = eligible
            session.add(submission)
            changed = True
    if changed:
        session.commit()


def submit_design(
    session: Session,
    challenge: Challenge,
    user_id: int,
    payload: ChallengeSubmissionCreate,
    settings: Settings,
    now: datetime
) -> ChallengeSubmission:
    """Record a user's single entry for a challenge and seat them in a room."""
    tz = challenge_zone(settings)
    challenge_id = challenge.challenge_id

    description = (payload.outfit_description or "").strip()
    if not description:
        raise ValidationError("Outfit description is required")

    now_local = as_utc(now).astimezone(tz)
    if now_local < submission_opens_at(challenge, tz):
        raise ValidationError("Challenge has not started yet")
    if now_local >= as_utc(challenge.submission_deadline).astimezone(tz):
        raise ValidationError("Submission deadline has passed")

    if get_user_submission(session, challenge_id, user_id):
        raise DuplicateSubmission()

    if payload.clothing_item_id is not None:
        item = session.get(ClothingItem, payload.clothing_item_id)
        if not item or item.creator_id != user_id:
            raise ValidationError("Invalid clothing item")

    room = assign_participant(session, challenge_id, user_id, settings.room_capacity)

    submission = ChallengeSubmission(
        challenge_id=challenge_id,
        user_id=user_id,
        outfit_description=description,
        generated_image_url=payload.generated_image_url,
        clothing_item_id=payload.clothing_item_id,
        competition_room_id=room.room_id,
        is_eligible_for_competition=is_eligible(session, challenge_id, user_id, settings.eligibility_upvotes)
    )
    session.add(submission)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        raise DuplicateSubmission()
    session.refresh(submission)
    logger.info(
        "User %s submitted %s to challenge %s in room %s",
        user_id, submission.submission_id, challenge_id, room.room_number
    )
    return submission


def toggle_upvote(
    session: Session,
    submission_id: int,
    user_id: int,
    settings: Settings,
    now: datetime
) -> UpvoteResult:
    """Add the user's upvote, or take it back if it already exists."""
    # Lock the submission row so concurrent toggles by the same user serialize
    submission = session.exec(
        select(ChallengeSubmission)
        .where(ChallengeSubmission.submission_id == submission_id)
        .with_for_update()
    ).first()
    if not submission:
        raise NotFound("Submission not found")
    if submission.user_id == user_id:
        raise ValidationError("Cannot upvote your own submission")

    challenge_id = submission.challenge_id
    challenge = session.get(Challenge, challenge_id)
    state = resolve_phase(challenge, now, challenge_zone(settings))
    if isinstance(state, NotRevealed) or not state.voting_open:
        raise ValidationError("Voting is closed for this challenge")

    existing = session.exec(
        select(SubmissionUpvote)
        .where(
            (SubmissionUpvote.submission_id == submission_id) &
            (SubmissionUpvote.user_id == user_id)
        )
    ).first()
    if existing:
        session.delete(existing)
        upvoted = False
    else:
        session.add(SubmissionUpvote(submission_id=submission_id, user_id=user_id))
        upvoted = True

    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        raise Conflict("Upvote already recorded")

    cast = votes_cast(session, challenge_id, user_id)
    eligible = cast >= settings.eligibility_upvotes
    own = get_user_submission(session, challenge_id, user_id)
    if own and own.is_eligible_for_competition != eligible:
        own.is_eligible_for_competition = eligible
        session.add(own)
        session.commit()

    return UpvoteResult(
        submission_id=submission_id,
        upvoted=upvoted,
        upvote_count=upvote_count(session, submission_id),
        votes_cast=cast,
        is_eligible_for_competition=eligible
    )


def user_upvotes_in_room(session: Session, room_id: int, user_id: int) -> List[int]:
    return list(session.exec(
        select(SubmissionUpvote.submission_id)
        .join(ChallengeSubmission, ChallengeSubmission.submission_id == SubmissionUpvote.submission_id)
        .where(
            (SubmissionUpvote.user_id == user_id) &
            (ChallengeSubmission.competition_room_id == room_id)
        )
        .order_by(SubmissionUpvote.submission_id)
    ).all())
