from sqlmodel import SQLModel, Field, UniqueConstraint
from typing import Optional
from datetime import datetime, timezone

class CompetitionRoom(SQLModel, table=True):
    __table_args__ = (
        UniqueConstraint("challenge_id", "room_number", name="uq_room_challenge_number"),
    )

    room_id: Optional[int] = Field(default=None, primary_key=True)
    challenge_id: int = Field(foreign_key="challenge.challenge_id", index=True)
    room_number: int  # 1-based, contiguous per challenge
    max_participants: int
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

class CompetitionParticipant(SQLModel, table=True):
    # Scoped per room; one room per challenge is checked across rooms on assignment.
    # Seats run 1..max_participants, so a room never holds more rows than seats.
    __table_args__ = (
        UniqueConstraint("room_id", "user_id", name="uq_participant_room_user"),
        UniqueConstraint("room_id", "seat_number", name="uq_participant_room_seat"),
    )

    participant_id: Optional[int] = Field(default=None, primary_key=True)
    room_id: int = Field(foreign_key="competitionroom.room_id", index=True)
    user_id: int = Field(foreign_key="user.user_id", index=True)
    seat_number: int
    assigned_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
