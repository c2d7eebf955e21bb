import logging
from datetime import datetime
from typing import List

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from ..auth import AuthenticatedUser, require_admin
from ..config import Settings, get_settings
from ..database import get_session
from ..dependencies import check_maintenance
from ..errors import NotFound, ValidationError
from ..models.challenge import Challenge, ChallengeCreate
from ..models.challenge_submission import ChallengeSubmission
from ..services.notification import NotificationService, get_notification_service
from ..services.phase import as_utc, utcnow
from ..services.ranking import RankedSubmission, RankScope, rank_submissions
from ..services.rooms import (
    RebalanceReport, RoomParticipant, RoomStats, RoomSummary,
    get_challenge_room_stats, get_room_participants, rebalance_report,
)
from ..tasks.challenge_notifications import notify_challenge_winners

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/admin",
    tags=["Admin"],
    dependencies=[Depends(check_maintenance), Depends(require_admin)]
)

class ChallengeListItem(BaseModel):
    challenge: Challenge
    submission_count: int

class AdminRoom(RoomSummary):
    participants: List[RoomParticipant]
    submissions: List[RankedSubmission]

class ChallengeRoomsResponse(BaseModel):
    challenge: Challenge
    stats: RoomStats
    rebalance: RebalanceReport
    rooms: List[AdminRoom]

class NotifyWinnersResponse(BaseModel):
    notified: int
    winners: List[RankedSubmission]

@router.get("/challenges", response_model=List[ChallengeListItem])
def list_challenges(session: Session = Depends(get_session)):
    rows = session.exec(
        select(Challenge, func.count(ChallengeSubmission.submission_id))
        .outerjoin(ChallengeSubmission, ChallengeSubmission.challenge_id == Challenge.challenge_id)
        .group_by(Challenge.challenge_id)
        .order_by(Challenge.challenge_date.desc())
    ).all()
    return [ChallengeListItem(challenge=challenge, submission_count=count) for challenge, count in rows]

@router.post("/challenges", response_model=Challenge)
def create_challenge(
    challenge: ChallengeCreate,
    session: Session = Depends(get_session),
    current_user: AuthenticatedUser = Depends(require_admin)
):
    if not challenge.theme.strip():
        raise ValidationError("Theme is required")

    start = as_utc(challenge.competition_start)
    deadline = as_utc(challenge.submission_deadline)
    end = as_utc(challenge.competition_end)
    if not start < deadline:
        raise ValidationError("Competition start must be before the submission deadline")
    if not deadline < end:
        raise ValidationError("Submission deadline must be before the competition end")

    existing = session.exec(
        select(Challenge).where(Challenge.challenge_date == challenge.challenge_date)
    ).first()
    if existing:
        raise ValidationError("A challenge already exists for this date")

    new_challenge = Challenge(
        challenge_date=challenge.challenge_date,
        theme=challenge.theme.strip(),
        main_item=challenge.main_item,
        description=challenge.description,
        competition_start=start,
        submission_deadline=deadline,
        competition_end=end
    )
    session.add(new_challenge)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        raise ValidationError("A challenge already exists for this date")
    session.refresh(new_challenge)
    logger.info("Admin %s created challenge %s for %s", current_user.id, new_challenge.challenge_id, challenge.challenge_date)
    return new_challenge

@router.get("/challenges/{challenge_id}/rooms", response_model=ChallengeRoomsResponse)
def get_challenge_rooms(
    challenge_id: int,
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings)
):
    challenge = session.get(Challenge, challenge_id)
    if not challenge:
        raise NotFound("Challenge not found")

    stats = get_challenge_room_stats(session, challenge_id)
    rooms = [
        AdminRoom(
            **summary.model_dump(),
            participants=get_room_participants(session, summary.room_id),
            submissions=rank_submissions(
                session, challenge_id, RankScope.ROOM, settings.eligibility_upvotes, room_id=summary.room_id
            )
        )
        for summary in stats.rooms
    ]
    return ChallengeRoomsResponse(
        challenge=challenge,
        stats=stats,
        rebalance=rebalance_report(stats),
        rooms=rooms
    )

@router.post("/challenges/{challenge_id}/notify-winners", response_model=NotifyWinnersResponse)
def notify_winners(
    challenge_id: int,
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
    notifier: NotificationService = Depends(get_notification_service),
    now: datetime = Depends(utcnow)
):
    winners = notify_challenge_winners(session, challenge_id, notifier, settings, now)
    return NotifyWinnersResponse(notified=len(winners), winners=winners)
