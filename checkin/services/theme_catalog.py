"""
Check-in Platform
Theme authoring for super-admins.

    catalog = ThemeCatalog()
    theme = catalog.save_theme(actor, {
        "title": "Workload",
        "default_visibility": "open",
        "questions": ["How is your workload?", {"text": "What gives you energy?",
                                                "explanation": "Think of the last month."}],
    })
    catalog.save_theme(actor, {"title": "Workload & energy"}, theme_id=theme.id)

A theme carries 1..MAX_FIXED_QUESTIONS fixed questions, numbered from 1 in
the order given.  An update that sends ``questions`` replaces the whole
template; history items keep their text and lose only the question link.
"""

import logging

from checkin.core.exceptions import NotFoundError, ValidationError
from checkin.models import db
from checkin.models.audit import record_audit
from checkin.models.theme import MAX_FIXED_QUESTIONS, THEME_VISIBILITIES, Theme, ThemeQuestion
from checkin.services.capability import require_capability

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 200

_TEXT_FIELDS = ("description", "scoring_rubric", "goal")
_FLAG_FIELDS = ("is_ready", "gives_summary")
THEME_FIELDS = ("title", "default_visibility", "sort_order", "questions") + _TEXT_FIELDS + _FLAG_FIELDS


def _clean_questions(raw, errors: dict) -> list[dict] | None:
    if not isinstance(raw, list) or not raw:
        errors["questions"] = "must be a non-empty list"
        return None
    if len(raw) > MAX_FIXED_QUESTIONS:
        errors["questions"] = f"at most {MAX_FIXED_QUESTIONS} questions per theme"
        return None

    cleaned = []
    for pos, item in enumerate(raw, start=1):
        if isinstance(item, str):
            item = {"text": item}
        if not isinstance(item, dict):
            errors[f"questions[{pos}]"] = "must be a string or an object"
            continue
        text = item.get("text")
        explanation = item.get("explanation") or ""
        if not isinstance(text, str) or not text.strip():
            errors[f"questions[{pos}].text"] = "required"
            continue
        if not isinstance(explanation, str):
            errors[f"questions[{pos}].explanation"] = "must be a string"
            continue
        cleaned.append({"position": pos, "text": text.strip(), "explanation": explanation.strip()})
    return cleaned


def validate_theme(data: dict, *, creating: bool) -> dict:
    """Check a theme payload; return the cleaned changes.

    Raises:
        ValidationError: unknown field or invalid value, with per-field details.
    """
    unknown = set(data) - set(THEME_FIELDS)
    if unknown:
        raise ValidationError("Unknown theme fields", details={f: "unknown" for f in sorted(unknown)})

    errors: dict[str, str] = {}
    changes: dict = {}

    if "title" in data or creating:
        title = data.get("title")
        if not isinstance(title, str) or not title.strip():
            errors["title"] = "required"
        elif len(title.strip()) > MAX_TITLE_LENGTH:
            errors["title"] = f"max {MAX_TITLE_LENGTH} characters"
        else:
            changes["title"] = title.strip()

    if "questions" in data or creating:
        questions = _clean_questions(data.get("questions"), errors)
        if questions is not None:
            changes["questions"] = questions

    if "default_visibility" in data:
        if data["default_visibility"] not in THEME_VISIBILITIES:
            errors["default_visibility"] = f"expected one of {sorted(THEME_VISIBILITIES)}"
        else:
            changes["default_visibility"] = data["default_visibility"]
    if "sort_order" in data:
        value = data["sort_order"]
        if isinstance(value, bool) or not isinstance(value, int):
            errors["sort_order"] = "must be an integer"
        else:
            changes["sort_order"] = value
    for flag in _FLAG_FIELDS:
        if flag in data:
            if not isinstance(data[flag], bool):
                errors[flag] = "must be a boolean"
            else:
                changes[flag] = data[flag]
    for field in _TEXT_FIELDS:
        if field in data:
            value = data[field]
            if value is not None and not isinstance(value, str):
                errors[field] = "must be a string"
            else:
                changes[field] = value or ""

    if errors:
        raise ValidationError("Invalid theme", details=errors)
    return changes


class ThemeCatalog:
    """Create and edit catalogue themes with their fixed questions."""

    def __init__(self, session=None):
        self.session = session or db.session

    def _replace_questions(self, theme: Theme, questions: list[dict]) -> None:
        # Old rows go first: positions are unique per theme
        for old in list(theme.questions):
            self.session.delete(old)
        self.session.flush()
        self.session.expire(theme, ["questions"])
        for q in questions:
            self.session.add(ThemeQuestion(theme_id=theme.id, **q))
        self.session.flush()
        self.session.expire(theme, ["questions"])

    def save_theme(self, actor, data: dict, theme_id: int | None = None) -> Theme:
        """Create a theme, or update ``theme_id`` when given.

        Raises:
            AccessDenied: actor is not a super-admin.
            NotFoundError: unknown ``theme_id``.
            ValidationError: invalid payload; nothing is written.
        """
        require_capability(actor, "theme.author")
        creating = theme_id is None
        changes = validate_theme(data or {}, creating=creating)
        questions = changes.pop("questions", None)

        if creating:
            theme = Theme(**changes)
            self.session.add(theme)
            self.session.flush()
        else:
            theme = self.session.get(Theme, theme_id)
            if theme is None:
                raise NotFoundError("Theme", theme_id)
            for field, value in changes.items():
                setattr(theme, field, value)
            self.session.flush()

        if questions is not None:
            self._replace_questions(theme, questions)

        diff = dict(changes)
        if questions is not None:
            diff["questions"] = len(questions)
        record_audit(
            entity_type="theme", entity_id=theme.id,
            action="theme.create" if creating else "theme.update",
            actor=actor.email, actor_member_id=actor.id,
            diff=diff, session=self.session,
        )
        logger.info("Theme %s %s by member %s", theme.id, "created" if creating else "updated", actor.id)
        return theme
