from sqlmodel import SQLModel, Session, create_engine
from .config import DATABASE_URL

# SQLAlchemy database engine
engine = create_engine(DATABASE_URL, pool_pre_ping=True)


def get_session():
    with Session(engine) as session:
        yield session


def create_db_and_tables():
    # Table classes register themselves on import
    from .models import (  # noqa: F401
        challenge, challenge_submission, competition_room, device,
        item, payment, preorder, submission_upvote, user,
    )
    SQLModel.metadata.create_all(engine)
