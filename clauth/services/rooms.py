"""Competition room partitioning.

Every participant of a challenge lands in exactly one capacity-bounded room.
Rooms are numbered 1, 2, 3... per challenge and created only when every
existing room is full.
"""
import logging
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from ..errors import Conflict, NotFound
from ..models.challenge import Challenge
from ..models.challenge_submission import ChallengeSubmission
from ..models.competition_room import CompetitionParticipant, CompetitionRoom
from ..models.user import User

logger = logging.getLogger(__name__)

MAX_ASSIGN_ATTEMPTS = 3
REBALANCE_SPREAD = 10


class RoomSummary(BaseModel):
    room_id: int
    room_number: int
    max_participants: int
    participant_count: int
    submission_count: int


class RoomStats(BaseModel):
    total_rooms: int
    total_participants: int
    total_submissions: int
    rooms: List[RoomSummary]


class RebalanceReport(BaseModel):
    needs_rebalancing: bool
    room_sizes: List[int]
    min_size: int
    max_size: int


class RoomParticipant(BaseModel):
    participant_id: int
    user_id: int
    username: str
    display_name: Optional[str]
    assigned_at: datetime


def find_user_room(session: Session, challenge_id: int, user_id: int) -> Optional[CompetitionRoom]:
    """Look across every room of the challenge, not just one, for the user's seat."""
    return session.exec(
        select(CompetitionRoom)
        .join(CompetitionParticipant, CompetitionParticipant.room_id == CompetitionRoom.room_id)
        .where(
            (CompetitionRoom.challenge_id == challenge_id) &
            (CompetitionParticipant.user_id == user_id)
        )
    ).first()


def is_room_member(session: Session, room_id: int, user_id: int) -> bool:
    return session.exec(
        select(CompetitionParticipant.participant_id)
        .where(
            (CompetitionParticipant.room_id == room_id) &
            (CompetitionParticipant.user_id == user_id)
        )
    ).first() is not None


def _lock_challenge(session: Session, challenge_id: int) -> Challenge:
    # Row lock on the challenge serializes assignments for that challenge
    challenge = session.exec(
        select(Challenge)
        .where(Challenge.challenge_id == challenge_id)
        .with_for_update()
    ).first()
    if not challenge:
        raise NotFound("Challenge not found")
    return challenge


def _rooms_with_counts(session: Session, challenge_id: int):
    return session.exec(
        select(CompetitionRoom, func.count(CompetitionParticipant.participant_id))
        .outerjoin(CompetitionParticipant, CompetitionParticipant.room_id == CompetitionRoom.room_id)
        .where(CompetitionRoom.challenge_id == challenge_id)
        .group_by(CompetitionRoom.room_id)
        .order_by(CompetitionRoom.room_number)
    ).all()


def _free_seat(session: Session, room: CompetitionRoom) -> Optional[int]:
    taken = set(session.exec(
        select(CompetitionParticipant.seat_number)
        .where(CompetitionParticipant.room_id == room.room_id)
    ).all())
    return next((seat for seat in range(1, room.max_participants + 1) if seat not in taken), None)


def _assign_once(session: Session, challenge_id: int, user_id: int, capacity: int) -> CompetitionRoom:
    _lock_challenge(session, challenge_id)

    existing = find_user_room(session, challenge_id, user_id)
    if existing:
        return existing

    rooms = _rooms_with_counts(session, challenge_id)
    target, seat = None, None
    for room, count in rooms:
        if count < room.max_participants:
            seat = _free_seat(session, room)
            if seat is not None:
                target = room
                break

    if target is None:
        next_number = max(room.room_number for room, _ in rooms) + 1 if rooms else 1
        target = CompetitionRoom(
            challenge_id=challenge_id,
            room_number=next_number,
            max_participants=capacity
        )
        session.add(target)
        session.flush()
        seat = 1
        logger.info("Opened room %s for challenge %s", next_number, challenge_id)

    session.add(CompetitionParticipant(room_id=target.room_id, user_id=user_id, seat_number=seat))
    session.flush()
    logger.info(
        "Assigned user %s to room %s seat %s for challenge %s",
        user_id, target.room_number, seat, challenge_id
    )
    return target


def assign_participant(session: Session, challenge_id: int, user_id: int, capacity: int) -> CompetitionRoom:
    """Seat a user in the lowest-numbered room with space, opening a room if all are full.

    Idempotent: a user who already holds a seat gets that room back. Each
    attempt starts a fresh transaction whose first statement locks the
    challenge row. Seats are numbered 1..max_participants and unique per room,
    so two assignments that race for the last seat cannot both commit; the
    loser, like a lost race on a room number, is rolled back and retried.
    Commits the session.
    """
    for attempt in range(1, MAX_ASSIGN_ATTEMPTS + 1):
        # The challenge lock must be the first statement of its transaction
        session.commit()
        try:
            room = _assign_once(session, challenge_id, user_id, capacity)
            session.commit()
        except IntegrityError:
            session.rollback()
            logger.warning(
                "Room assignment conflict for user %s on challenge %s (attempt %s)",
                user_id, challenge_id, attempt
            )
            continue
        session.refresh(room)
        return room

    raise Conflict("Could not assign a competition room, please retry")


def get_room(session: Session, room_id: int) -> CompetitionRoom:
    room = session.get(CompetitionRoom, room_id)
    if not room:
        raise NotFound("Competition room not found")
    return room


def summarize_room(session: Session, room: CompetitionRoom) -> RoomSummary:
    participant_count = session.exec(
        select(func.count(CompetitionParticipant.participant_id))
        .where(CompetitionParticipant.room_id == room.room_id)
    ).one()
    submission_count = session.exec(
        select(func.count(ChallengeSubmission.submission_id))
        .where(ChallengeSubmission.competition_room_id == room.room_id)
    ).one()
    return RoomSummary(
        room_id=room.room_id,
        room_number=room.room_number,
        max_participants=room.max_participants,
        participant_count=participant_count,
        submission_count=submission_count
    )


def get_challenge_room_stats(session: Session, challenge_id: int) -> RoomStats:
    participants = dict(session.exec(
        select(CompetitionParticipant.room_id, func.count(CompetitionParticipant.participant_id))
        .join(CompetitionRoom, CompetitionRoom.room_id == CompetitionParticipant.room_id)
        .where(CompetitionRoom.challenge_id == challenge_id)
        .group_by(CompetitionParticipant.room_id)
    ).all())
    submissions = dict(session.exec(
        select(ChallengeSubmission.competition_room_id, func.count(ChallengeSubmission.submission_id))
        .where(
            (ChallengeSubmission.challenge_id == challenge_id) &
            (ChallengeSubmission.competition_room_id.is_not(None))
        )
        .group_by(ChallengeSubmission.competition_room_id)
    ).all())
    rooms = session.exec(
        select(CompetitionRoom)
        .where(CompetitionRoom.challenge_id == challenge_id)
        .order_by(CompetitionRoom.room_number)
    ).all()

    summaries = [
        RoomSummary(
            room_id=room.room_id,
            room_number=room.room_number,
            max_participants=room.max_participants,
            participant_count=participants.get(room.room_id, 0),
            submission_count=submissions.get(room.room_id, 0)
        )
        for room in rooms
    ]
    return RoomStats(
        total_rooms=len(summaries),
        total_participants=sum(r.participant_count for r in summaries),
        total_submissions=sum(r.submission_count for r in summaries),
        rooms=summaries
    )


def rebalance_report(stats: RoomStats) -> RebalanceReport:
    # Report only: moving people mid-competition would disrupt voting
    sizes = [room.participant_count for room in stats.rooms]
    min_size = min(sizes) if sizes else 0
    max_size = max(sizes) if sizes else 0
    needs = max_size - min_size > REBALANCE_SPREAD
    if needs:
        logger.info("Rooms need rebalancing: min %s, max %s", min_size, max_size)
    return RebalanceReport(
        needs_rebalancing=needs,
        room_sizes=sizes,
        min_size=min_size,
        max_size=max_size
    )


def get_room_participants(session: Session, room_id: int) -> List[RoomParticipant]:
    rows = session.exec(
        select(CompetitionParticipant, User)
        .join(User, User.user_id == CompetitionParticipant.user_id)
        .where(CompetitionParticipant.room_id == room_id)
        .order_by(CompetitionParticipant.assigned_at, CompetitionParticipant.participant_id)
    ).all()
    return [
        RoomParticipant(
            participant_id=participant.participant_id,
            user_id=user.user_id,
            username=user.username,
            display_name=user.display_name,
            assigned_at=participant.assigned_at
        )
        for participant, user in rows
    ]
