import logging
from datetime import datetime
from typing import List

from sqlmodel import Session

from ..config import Settings
from ..errors import NotFound
from ..models.challenge import Challenge
from ..services.notification import NotificationService
from ..services.phase import Phase, PhaseState, challenge_zone, resolve_phase
from ..services.ranking import RankedSubmission, top_winners

logger = logging.getLogger(__name__)

def notify_challenge_winners(
    session: Session,
    challenge_id: int,
    notifier: NotificationService,
    settings: Settings,
    now: datetime
) -> List[RankedSubmission]:
    """Send notifications to the top winners of a challenge once voting has ended"""
    challenge = session.get(Challenge, challenge_id)
    if not challenge:
        raise NotFound("Challenge not found")

    state = resolve_phase(challenge, now, challenge_zone(settings))
    if not isinstance(state, PhaseState) or state.phase != Phase.ENDED:
        logger.info("Challenge %s has not ended, skipping winner notifications", challenge_id)
        return []

    winners = top_winners(session, challenge_id, settings.eligibility_upvotes)
    for winner in winners:
        notifier.send_challenge_winner(
            db=session,
            user_id=winner.user.user_id,
            challenge_theme=challenge.theme,
            challenge_id=challenge_id,
            rank=winner.rank
        )
    logger.info("Notified %s winners of challenge %s", len(winners), challenge_id)
    return winners
