"""
Shared pytest fixtures for the Check-in Platform test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - org / member: pre-created Organization and Member rows
    - gateway: scripted completion-service fake
    - clock: frozen UTC clock
"""

import json
from datetime import datetime, timezone

import pytest

from checkin import create_app
from checkin.ai import prompts
from checkin.models import db as _db
from checkin.models.organization import Member, Organization


class ScriptedGateway:
    """Completion-service fake.

    Replies are queued per task name (``prompts.TASK_*``); a dict is sent as
    JSON, a string verbatim, an exception instance is raised.  Unscripted
    tasks fall back to ``defaults``.
    """

    def __init__(self, defaults=None):
        self.queues: dict[str, list] = {}
        self.defaults = dict(defaults or {})
        self.calls: list[dict] = []

    def script(self, task, *replies):
        self.queues.setdefault(task, []).extend(replies)
        return self

    def calls_for(self, task):
        return [c for c in self.calls if c["task"] == task]

    def chat(self, messages, model=None, **kwargs):
        system = next(m["content"] for m in messages if m["role"] == "system")
        task = system.split("\n", 1)[0].removeprefix("Task: ").strip()
        self.calls.append({"task": task, "messages": messages, **kwargs})

        queue = self.queues.get(task)
        reply = queue.pop(0) if queue else self.defaults.get(task)
        if reply is None:
            raise AssertionError(f"no scripted reply for {task}")
        if isinstance(reply, Exception):
            raise reply
        content = reply if isinstance(reply, str) else json.dumps(reply)
        return {"content": content, "prompt_tokens": 10, "completion_tokens": 10, "model": "fake"}


DEFAULT_REPLIES = {
    prompts.TASK_FOLLOWUP: {
        "continue": False, "reply": "Thanks.", "next_question": None,
        "rationale": "clear enough",
    },
    prompts.TASK_SUMMARY: {"summary": "You are doing fine overall.", "score": 7},
    prompts.TASK_ACTIONS: {
        "actions": ["Take a walk at lunch.", "Ask for feedback.", "Plan your week."],
        "rationale": "Small steps.",
    },
    prompts.TASK_TOP_ACTIONS: {
        "actions": [
            {"text": "Talk to your manager.", "priority": "high", "rationale": "Workload."},
            {"text": "Protect focus time.", "priority": "medium", "rationale": "Energy."},
            {"text": "Celebrate a win.", "priority": "low", "rationale": "Motivation."},
        ],
        "general_rationale": "Workload first.",
    },
    prompts.TASK_INSIGHT: {
        "summary": "The group is positive with some workload remarks.",
        "advice": [{"text": "Review workload.", "priority": 1}],
        "signal_words": ["workload"],
    },
}


NOW = datetime(2025, 6, 14, 9, 0, tzinfo=timezone.utc)


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield _db.session
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def gateway():
    return ScriptedGateway(DEFAULT_REPLIES)


@pytest.fixture()
def clock():
    """Frozen at 2025-06-14 09:00 UTC (June is an active month by default)."""
    return lambda: NOW


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def org():
    o = Organization(name="Acme", active_months=[3, 6, 9])
    _db.session.add(o)
    _db.session.flush()
    return o


@pytest.fixture()
def member(org):
    m = Member(organization_id=org.id, email="member@acme.test", full_name="Pat Member", role="member")
    _db.session.add(m)
    _db.session.flush()
    return m
