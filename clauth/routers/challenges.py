from fastapi import APIRouter, Depends, Query
from sqlmodel import Session, select
from pydantic import BaseModel
from typing import Optional, List
from datetime import date, datetime

from ..auth import AuthenticatedUser, get_current_user
from ..config import Settings, get_settings
from ..database import get_session
from ..dependencies import check_maintenance
from ..errors import Forbidden, NotFound
from ..models.challenge import Challenge
from ..models.challenge_submission import ChallengeSubmission, ChallengeSubmissionCreate
from ..services.ledger import (
    UpvoteResult, get_user_submission, submit_design, toggle_upvote,
    user_upvotes_in_room, votes_cast,
)
from ..services.phase import (
    NotRevealed, Phase, PhaseState, challenge_for_day, challenge_zone,
    current_challenge, local_today, resolve_phase, utcnow,
)
from ..services.ranking import RankedSubmission, leaderboard, room_submissions, top_submissions_for_challenge, top_winners
from ..services.rooms import (
    RoomParticipant, RoomSummary, assign_participant, find_user_room,
    get_room, get_room_participants, is_room_member, summarize_room,
)

router = APIRouter(
    prefix="/challenges",
    tags=["Challenges"],
    dependencies=[Depends(check_maintenance)]
)

class CurrentChallengeResponse(BaseModel):
    challenge: Optional[Challenge] = None
    phase: Optional[Phase] = None
    submissions_open: bool = False
    voting_open: bool = False
    challenge_ended: bool = False
    time_remaining_ms: Optional[int] = None
    time_until_reveal_ms: Optional[int] = None
    revealed: bool = False

class MyRoomResponse(BaseModel):
    challenge_id: Optional[int] = None
    room: Optional[RoomSummary] = None

class RoomDetail(RoomSummary):
    challenge: Challenge
    participants: List[RoomParticipant]

class RoomSubmissionsResponse(BaseModel):
    room_id: int
    qualified: List[RankedSubmission]
    unqualified: List[RankedSubmission]

class UserUpvotesResponse(BaseModel):
    upvoted_submission_ids: List[int]
    upvote_count: int

class UpvoteRequest(BaseModel):
    submission_id: int

class EligibilityResponse(BaseModel):
    challenge_id: int
    votes_cast: int
    votes_required: int
    is_eligible: bool

class TopSubmissionsResponse(BaseModel):
    challenge_id: Optional[int] = None
    submissions: List[RankedSubmission] = []

class LeaderboardResponse(BaseModel):
    challenge_id: int
    total_eligible: int
    entries: List[RankedSubmission]

class PastChallengesResponse(BaseModel):
    year: int
    month: int
    challenges: List[Challenge]

class TopWinnersResponse(BaseModel):
    challenge: Optional[Challenge] = None
    winners: List[RankedSubmission] = []

def _visible_phase(challenge: Challenge, now: datetime, settings: Settings) -> Optional[PhaseState]:
    """Phase of a challenge, or None while it is still hidden from callers."""
    state = resolve_phase(challenge, now, challenge_zone(settings))
    if isinstance(state, NotRevealed):
        return None
    return state

def _get_revealed_challenge(session: Session, challenge_id: int, now: datetime, settings: Settings) -> Challenge:
    challenge = session.get(Challenge, challenge_id)
    if not challenge or _visible_phase(challenge, now, settings) is None:
        raise NotFound("Challenge not found")
    return challenge

def _get_member_room(session: Session, room_id: int, current_user: AuthenticatedUser):
    room = get_room(session, room_id)
    if not current_user.is_admin and not is_room_member(session, room_id, current_user.id):
        raise Forbidden("Access denied")
    return room

@router.get("/current", response_model=CurrentChallengeResponse)
def get_current_challenge(
    session: Session = Depends(get_session),
    current_user: AuthenticatedUser = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
    now: datetime = Depends(utcnow)
):
    tz = challenge_zone(settings)
    challenge = current_challenge(session, now, tz)
    if not challenge:
        return CurrentChallengeResponse()

    state = resolve_phase(challenge, now, tz, reveal_early=current_user.is_admin)
    if isinstance(state, NotRevealed):
        return CurrentChallengeResponse(time_until_reveal_ms=state.time_until_reveal_ms)

    return CurrentChallengeResponse(challenge=challenge, **state.model_dump())

@router.get("/my-competition-room", response_model=MyRoomResponse)
def get_my_competition_room(
    session: Session = Depends(get_session),
    current_user: AuthenticatedUser = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
    now: datetime = Depends(utcnow)
):
    challenge = current_challenge(session, now, challenge_zone(settings))
    if not challenge:
        return MyRoomResponse()
    state = _visible_phase(challenge, now, settings)
    if state is None:
        return MyRoomResponse()

    room = find_user_room(session, challenge.challenge_id, current_user.id)
    if not room and state.submissions_open:
        room = assign_participant(session, challenge.challenge_id, current_user.id, settings.room_capacity)
    if not room:
        return MyRoomResponse(challenge_id=challenge.challenge_id)

    return MyRoomResponse(challenge_id=challenge.challenge_id, room=summarize_room(session, room))

@router.post("/submit-design", response_model=ChallengeSubmission)
def submit_challenge_design(
    submission: ChallengeSubmissionCreate,
    session: Session = Depends(get_session),
    current_user: AuthenticatedUser = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
    now: datetime = Depends(utcnow)
):
    challenge = session.get(Challenge, submission.challenge_id)
    if not challenge:
        raise NotFound("Challenge not found")
    return submit_design(session, challenge, current_user.id, submission, settings, now)

@router.get("/my-submission", response_model=Optional[ChallengeSubmission])
def get_my_submission(
    session: Session = Depends(get_session),
    current_user: AuthenticatedUser = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
    now: datetime = Depends(utcnow)
):
    challenge = current_challenge(session, now, challenge_zone(settings))
    if not challenge:
        return None
    return get_user_submission(session, challenge.challenge_id, current_user.id)

@router.get("/competition-room/{room_id}", response_model=RoomDetail)
def get_competition_room(
    room_id: int,
    session: Session = Depends(get_session),
    current_user: AuthenticatedUser = Depends(get_current_user)
):
    room = _get_member_room(session, room_id, current_user)
    return RoomDetail(
        **summarize_room(session, room).model_dump(),
        challenge=session.get(Challenge, room.challenge_id),
        participants=get_room_participants(session, room_id)
    )

@router.get("/competition-room/{room_id}/submissions", response_model=RoomSubmissionsResponse)
def get_competition_room_submissions(
    room_id: int,
    session: Session = Depends(get_session),
    current_user: AuthenticatedUser = Depends(get_current_user),
    settings: Settings = Depends(get_settings)
):
    room = _get_member_room(session, room_id, current_user)
    qualified, unqualified = room_submissions(
        session, room.challenge_id, room_id, settings.eligibility_upvotes
    )
    return RoomSubmissionsResponse(room_id=room_id, qualified=qualified, unqualified=unqualified)

@router.api_route("/competition-room/{room_id}/user-upvotes", methods=["GET", "POST"], response_model=UserUpvotesResponse)
def get_user_upvotes(
    room_id: int,
    session: Session = Depends(get_session),
    current_user: AuthenticatedUser = Depends(get_current_user)
):
    _get_member_room(session, room_id, current_user)
    upvoted = user_upvotes_in_room(session, room_id, current_user.id)
    return UserUpvotesResponse(upvoted_submission_ids=upvoted, upvote_count=len(upvoted))

@router.post("/upvote", response_model=UpvoteResult)
def upvote_submission(
    request: UpvoteRequest,
    session: Session = Depends(get_session),
    current_user: AuthenticatedUser = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
    now: datetime = Depends(utcnow)
):
    return toggle_upvote(session, request.submission_id, current_user.id, settings, now)

@router.get("/check-eligibility", response_model=EligibilityResponse)
def check_eligibility(
    challenge_id: Optional[int] = None,
    session: Session = Depends(get_session),
    current_user: AuthenticatedUser = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
    now: datetime = Depends(utcnow)
):
    if challenge_id is None:
        challenge = current_challenge(session, now, challenge_zone(settings))
        if not challenge:
            raise NotFound("No challenge today")
    else:
        challenge = _get_revealed_challenge(session, challenge_id, now, settings)

    cast = votes_cast(session, challenge.challenge_id, current_user.id)
    return EligibilityResponse(
        challenge_id=challenge.challenge_id,
        votes_cast=cast,
        votes_required=settings.eligibility_upvotes,
        is_eligible=cast >= settings.eligibility_upvotes
    )

@router.get("/current/top-submissions", response_model=TopSubmissionsResponse)
def get_current_top_submissions(
    limit: int = Query(default=10, ge=1, le=100),
    session: Session = Depends(get_session),
    current_user: AuthenticatedUser = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
    now: datetime = Depends(utcnow)
):
    challenge = current_challenge(session, now, challenge_zone(settings))
    if not challenge or _visible_phase(challenge, now, settings) is None:
        return TopSubmissionsResponse()
    return TopSubmissionsResponse(
        challenge_id=challenge.challenge_id,
        submissions=top_submissions_for_challenge(session, challenge.challenge_id, limit)
    )

@router.get("/leaderboard", response_model=LeaderboardResponse)
def get_leaderboard(
    challenge_id: int,
    session: Session = Depends(get_session),
    current_user: AuthenticatedUser = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
    now: datetime = Depends(utcnow)
):
    challenge = _get_revealed_challenge(session, challenge_id, now, settings)
    entries, total = leaderboard(session, challenge.challenge_id, settings.eligibility_upvotes)
    return LeaderboardResponse(challenge_id=challenge.challenge_id, total_eligible=total, entries=entries)

@router.get("/past", response_model=PastChallengesResponse)
def get_past_challenges(
    year: Optional[int] = Query(default=None, ge=2000, le=9999),
    month: Optional[int] = Query(default=None, ge=1, le=12),
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
    now: datetime = Depends(utcnow)
):
    today = local_today(now, challenge_zone(settings))
    year = year or today.year
    month = month or today.month
    first = date(year, month, 1)
    last = date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)

    challenges = session.exec(
        select(Challenge)
        .where((Challenge.challenge_date >= first) & (Challenge.challenge_date < last))
        .order_by(Challenge.challenge_date)
    ).all()

    ended = []
    for challenge in challenges:
        state = _visible_phase(challenge, now, settings)
        if state and state.challenge_ended:
            ended.append(challenge)
    return PastChallengesResponse(year=year, month=month, challenges=ended)

@router.get("/past/{day}/top-winners", response_model=TopWinnersResponse)
def get_top_winners(
    day: date,
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
    now: datetime = Depends(utcnow)
):
    challenge = challenge_for_day(session, day)
    # Hidden challenges answer exactly like missing ones
    if not challenge or _visible_phase(challenge, now, settings) is None:
        return TopWinnersResponse()
    return TopWinnersResponse(
        challenge=challenge,
        winners=top_winners(session, challenge.challenge_id, settings.eligibility_upvotes)
    )

@router.get("/past/{day}/user-room", response_model=MyRoomResponse)
def get_past_user_room(
    day: date,
    session: Session = Depends(get_session),
    current_user: AuthenticatedUser = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
    now: datetime = Depends(utcnow)
):
    challenge = challenge_for_day(session, day)
    if not challenge or _visible_phase(challenge, now, settings) is None:
        return MyRoomResponse()

    room = find_user_room(session, challenge.challenge_id, current_user.id)
    if not room:
        return MyRoomResponse(challenge_id=challenge.challenge_id)
    return MyRoomResponse(challenge_id=challenge.challenge_id, room=summarize_room(session, room))
