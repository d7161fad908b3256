"""Theme evaluation: a member rates their own completed conversation, once."""

import logging

from sqlalchemy.exc import IntegrityError

from checkin.core.exceptions import ConflictError, StateConflictError, ValidationError
from checkin.models import db
from checkin.models.conversation import MAX_SCORE, MIN_SCORE, ThemeEvaluation
from checkin.services.conversation_service import ConversationStateMachine
from checkin.services.pii_screen import mask_sensitive

logger = logging.getLogger(__name__)

MAX_REMARK_LENGTH = 2000


def _masked_remark(remark: str | None) -> str | None:
    remark = (remark or "").strip()
    if not remark:
        return None
    masked, counts = mask_sensitive(remark)
    if counts:
        logger.info("Masked personal data in evaluation remark: %s", counts)
    return masked


def create_evaluation(actor, conversation_id: int, data: dict, *, session=None) -> ThemeEvaluation:
    """Store a 1..10 rating with an optional remark (personal data masked).

    Raises:
        ValidationError: score out of range or remark too long.
        StateConflictError: conversation still open.
        ConflictError: conversation already evaluated.
    """
    session = session or db.session
    conv = ConversationStateMachine(session).load(actor, conversation_id, "evaluation.create")
    if conv.status != "completed":
        raise StateConflictError("Conversation", conv.id, conv.status)

    score = data.get("score")
    if isinstance(score, bool) or not isinstance(score, int) or not MIN_SCORE <= score <= MAX_SCORE:
        raise ValidationError("score must be an integer 1..10", details={"score": score})
    remark = data.get("remark")
    if remark is not None and (not isinstance(remark, str) or len(remark) > MAX_REMARK_LENGTH):
        raise ValidationError("remark must be a string of at most 2000 characters",
                              details={"remark": "invalid"})

    evaluation = ThemeEvaluation(
        conversation_id=conv.id, member_id=conv.member_id, theme_id=conv.theme_id,
        score=score, remark=_masked_remark(remark),
    )
    try:
        with session.begin_nested():
            session.add(evaluation)
    except IntegrityError as exc:
        raise ConflictError("ThemeEvaluation", "conversation_id", str(conv.id)) from exc

    logger.info("Theme evaluation stored conversation=%s score=%s", conv.id, score)
    return evaluation
