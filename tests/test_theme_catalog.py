"""
Check-in Platform
Tests: theme authoring (ThemeCatalog).

Covers:
    - create with ordered questions, audit row
    - question limit and payload validation
    - update: partial fields, question template replacement
    - super-admin only
"""

import pytest

from checkin.core.exceptions import AccessDenied, NotFoundError, ValidationError
from checkin.models import db as _db
from checkin.models.audit import AuditLog
from checkin.models.conversation import Conversation, ConversationHistoryItem
from checkin.models.organization import Member
from checkin.models.theme import MAX_FIXED_QUESTIONS, Theme, ThemeQuestion
from checkin.services.theme_catalog import ThemeCatalog


def _make_super_admin(org):
    m = Member(organization_id=org.id, email="root@acme.test", role="super_admin")
    _db.session.add(m)
    _db.session.flush()
    return m


@pytest.fixture()
def root(org):
    return _make_super_admin(org)


def _payload(**overrides):
    data = {
        "title": "Workload",
        "questions": ["How is your workload?", {"text": "What gives you energy?",
                                                "explanation": "Think of the last month."}],
    }
    data.update(overrides)
    return data


class TestCreate:
    def test_creates_theme_with_numbered_questions(self, root):
        theme = ThemeCatalog().save_theme(root, _payload(gives_summary=False, sort_order=3))

        assert theme.title == "Workload"
        assert theme.gives_summary is False
        assert theme.default_visibility == "open"
        assert [(q.position, q.text) for q in theme.questions] == [
            (1, "How is your workload?"), (2, "What gives you energy?"),
        ]
        assert theme.questions[1].explanation == "Think of the last month."
        assert AuditLog.query.filter_by(action="theme.create").count() == 1

    def test_question_limit(self, root):
        questions = [f"Question {i}?" for i in range(MAX_FIXED_QUESTIONS + 1)]
        with pytest.raises(ValidationError) as exc:
            ThemeCatalog().save_theme(root, _payload(questions=questions))
        assert "questions" in exc.value.details
        assert Theme.query.count() == 0

    def test_five_questions_are_accepted(self, root):
        questions = [f"Question {i}?" for i in range(MAX_FIXED_QUESTIONS)]
        theme = ThemeCatalog().save_theme(root, _payload(questions=questions))
        assert len(theme.questions) == MAX_FIXED_QUESTIONS

    @pytest.mark.parametrize("bad", [
        {"title": "  "},
        {"questions": []},
        {"questions": ["ok?", {"text": ""}]},
        {"default_visibility": "hidden"},
        {"gives_summary": "yes"},
        {"colour": "blue"},
    ])
    def test_invalid_payload_writes_nothing(self, root, bad):
        with pytest.raises(ValidationError):
            ThemeCatalog().save_theme(root, _payload(**bad))
        assert Theme.query.count() == 0

    def test_org_admin_is_refused(self, org):
        admin = Member(organization_id=org.id, email="admin@acme.test", role="org_admin")
        _db.session.add(admin)
        _db.session.flush()
        with pytest.raises(AccessDenied):
            ThemeCatalog().save_theme(admin, _payload())


class TestUpdate:
    def test_partial_update_keeps_questions(self, root):
        catalog = ThemeCatalog()
        theme = catalog.save_theme(root, _payload())
        catalog.save_theme(root, {"title": "Workload & energy", "is_ready": False}, theme_id=theme.id)

        assert theme.title == "Workload & energy"
        assert theme.is_ready is False
        assert len(theme.questions) == 2
        assert AuditLog.query.filter_by(action="theme.update").count() == 1

    def test_questions_replace_template(self, root, member):
        catalog = ThemeCatalog()
        theme = catalog.save_theme(root, _payload())
        conv = Conversation(organization_id=member.organization_id, member_id=member.id,
                            theme_id=theme.id, period_key="2025-06", status="open")
        _db.session.add(conv)
        _db.session.flush()
        item = ConversationHistoryItem(conversation_id=conv.id, sequence=1, kind="fixed_question",
                                       question_id=theme.questions[0].id,
                                       text="How is your workload?", answer="Busy but fine.")
        _db.session.add(item)
        _db.session.flush()

        catalog.save_theme(root, {"questions": ["What would you change?"]}, theme_id=theme.id)

        assert [q.text for q in theme.questions] == ["What would you change?"]
        assert ThemeQuestion.query.count() == 1
        _db.session.refresh(item)
        assert item.question_id is None
        assert item.text == "How is your workload?"

    def test_unknown_theme(self, root):
        with pytest.raises(NotFoundError):
            ThemeCatalog().save_theme(root, {"title": "Gone"}, theme_id=404)
