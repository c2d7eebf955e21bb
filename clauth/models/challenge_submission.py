from sqlmodel import SQLModel, Field, UniqueConstraint
from typing import Optional
from datetime import datetime, timezone

class ChallengeSubmissionBase(SQLModel):
    outfit_description: str = Field(max_length=1000)
    generated_image_url: Optional[str] = Field(default=None, max_length=500)
    clothing_item_id: Optional[int] = Field(default=None, foreign_key="clothingitem.clothing_item_id")

class ChallengeSubmission(ChallengeSubmissionBase, table=True):
    # One submission per user per challenge
    __table_args__ = (
        UniqueConstraint("challenge_id", "user_id", name="uq_submission_challenge_user"),
    )

    submission_id: Optional[int] = Field(default=None, primary_key=True)
    challenge_id: int = Field(foreign_key="challenge.challenge_id", index=True)
    user_id: int = Field(foreign_key="user.user_id", index=True)
    competition_room_id: Optional[int] = Field(default=None, foreign_key="competitionroom.room_id", index=True)
    is_eligible_for_competition: bool = Field(default=False)
    submitted_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

class ChallengeSubmissionCreate(ChallengeSubmissionBase):
    challenge_id: int
