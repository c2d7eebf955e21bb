from sqlmodel import SQLModel, Field
from typing import Optional
from datetime import date, datetime, timezone

class ChallengeBase(SQLModel):
    challenge_date: date = Field(index=True, unique=True)  # calendar day in the challenge time zone
    theme: str = Field(max_length=200)
    main_item: Optional[str] = Field(default=None, max_length=100)
    description: Optional[str] = Field(default=None, max_length=1000)
    submission_deadline: datetime
    competition_start: Optional[datetime] = None  # unset means visible immediately
    competition_end: Optional[datetime] = None  # unset means voting closes with submissions

class Challenge(ChallengeBase, table=True):
    challenge_id: Optional[int] = Field(default=None, primary_key=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

class ChallengeCreate(SQLModel):
    challenge_date: date
    theme: str
    main_item: Optional[str] = None
    description: Optional[str] = None
    submission_deadline: datetime
    competition_start: datetime
    competition_end: datetime
