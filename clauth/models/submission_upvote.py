from sqlmodel import SQLModel, Field, UniqueConstraint
from typing import Optional
from datetime import datetime, timezone

class SubmissionUpvote(SQLModel, table=True):
    __table_args__ = (
        UniqueConstraint("submission_id", "user_id", name="uq_upvote_submission_user"),
    )

    upvote_id: Optional[int] = Field(default=None, primary_key=True)
    submission_id: int = Field(foreign_key="challengesubmission.submission_id", index=True)
    user_id: int = Field(foreign_key="user.user_id", index=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
