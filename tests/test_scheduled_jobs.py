"""
Check-in Platform
Tests: SchedulerService and the registered background jobs.
"""

from datetime import timedelta

import pytest

from checkin.ai import gateway as gateway_module
from checkin.models import db as _db
from checkin.models.conversation import Conversation, ConversationResult
from checkin.models.organization import Member
from checkin.models.scheduling import ScheduledJob
from checkin.models.theme import Theme
from checkin.services import period_clock
from checkin.services.scheduler_service import SchedulerService, get_registered_jobs


def _make_theme(title="Workload", gives_summary=True):
    t = Theme(title=title, gives_summary=gives_summary)
    _db.session.add(t)
    _db.session.flush()
    return t


def _make_completed(member, theme, age_days=1, anonymized=False):
    ended = period_clock.utcnow() - timedelta(days=age_days)
    conv = Conversation(
        organization_id=member.organization_id, member_id=member.id, theme_id=theme.id,
        period_key=period_clock.period_of(ended), status="completed", completion_reason="finished",
        started_at=ended - timedelta(minutes=20), ended_at=ended,
        anonymized_at=ended if anonymized else None,
    )
    _db.session.add(conv)
    _db.session.flush()
    return conv


@pytest.fixture()
def scripted(monkeypatch, gateway):
    monkeypatch.setattr(gateway_module, "_default_gateway", gateway)
    return gateway


class TestRegistry:
    def test_all_jobs_registered(self):
        assert set(get_registered_jobs()) == {
            "retention_anonymize", "retention_delete", "result_auto_heal", "insight_auto_generate",
        }

    def test_ensure_jobs_registered_is_idempotent(self):
        assert len(SchedulerService.ensure_jobs_registered()) == 4
        assert SchedulerService.ensure_jobs_registered() == []
        job = ScheduledJob.query.filter_by(job_name="retention_delete").one()
        assert job.schedule_config["hour"] == "3"

    def test_unknown_job(self):
        outcome = SchedulerService.run_job("defragment")
        assert outcome["status"] == "error"
        assert "Unknown job" in outcome["error"]


class TestRunJob:
    def test_run_is_recorded_on_the_job_row(self, org):
        SchedulerService.ensure_jobs_registered()
        outcome = SchedulerService.run_job("retention_anonymize")

        assert outcome["status"] == "success"
        assert outcome["result"]["mode"] == "anonymize"
        job = ScheduledJob.query.filter_by(job_name="retention_anonymize").one()
        assert job.run_count == 1
        assert job.last_run_status == "success"

    def test_disabled_job_is_skipped_unless_forced(self, org):
        SchedulerService.ensure_jobs_registered()
        SchedulerService.toggle_job("retention_delete", False)

        assert SchedulerService.run_job("retention_delete")["status"] == "skipped"
        assert SchedulerService.run_job("retention_delete", force=True)["status"] == "success"

    def test_toggle_unknown_job(self):
        assert SchedulerService.toggle_job("nope", True) is None


class TestRetentionJobs:
    def test_delete_job_uses_each_org_horizon(self, org, member):
        theme = _make_theme()
        expired = _make_completed(member, theme, age_days=org.delete_after_days + 5)
        expired_id = expired.id

        outcome = SchedulerService.run_job("retention_delete")
        assert outcome["result"]["affected"] == 1
        assert Conversation.query.filter_by(id=expired_id).count() == 0

    def test_anonymize_job(self, org, member):
        conv = _make_completed(member, _make_theme(), age_days=org.anonymize_after_days + 1)
        conv_id = conv.id

        SchedulerService.run_job("retention_anonymize")
        _db.session.expire_all()
        assert _db.session.get(Conversation, conv_id).anonymized_at is not None


class TestAutoHeal:
    def test_heals_completed_conversations_without_summary(self, org, member, scripted):
        conv = _make_completed(member, _make_theme())
        _make_completed(member, _make_theme("Silent", gives_summary=False))
        _make_completed(member, _make_theme("Old"), anonymized=True)

        outcome = SchedulerService.run_job("result_auto_heal")

        assert outcome["result"] == {"candidates": 1, "healed": 1, "failed": 0}
        result = ConversationResult.query.filter_by(conversation_id=conv.id).one()
        assert result.score == 7

    def test_fallback_summary_is_regenerated(self, org, member, scripted):
        conv = _make_completed(member, _make_theme())
        _db.session.add(ConversationResult(
            conversation_id=conv.id, member_id=member.id, theme_id=conv.theme_id,
            period_key=conv.period_key, summary="canned", summary_fallback=True,
        ))
        _db.session.flush()

        outcome = SchedulerService.run_job("result_auto_heal")

        assert outcome["result"]["healed"] == 1
        result = ConversationResult.query.filter_by(conversation_id=conv.id).one()
        assert result.summary_fallback is False
        assert result.score == 7

    def test_upstream_failure_is_counted_not_raised(self, org, member, scripted):
        from checkin.core.exceptions import UpstreamUnavailable

        _make_completed(member, _make_theme())
        scripted.script("conversation_summary", UpstreamUnavailable("openai", "down"))

        outcome = SchedulerService.run_job("result_auto_heal")
        assert outcome["status"] == "success"
        assert outcome["result"]["failed"] == 1


class TestInsightJob:
    def test_below_quorum_is_skipped(self, org, member, scripted):
        theme = _make_theme()
        conv = _make_completed(member, theme, age_days=0)
        _db.session.add(ConversationResult(conversation_id=conv.id, member_id=member.id,
                                           theme_id=theme.id, period_key=conv.period_key, score=6))
        _db.session.flush()

        outcome = SchedulerService.run_job("insight_auto_generate")

        assert outcome["result"]["checked"] == 1
        assert outcome["result"]["generated"] == 0
        assert outcome["result"]["skipped"] == 1
        assert scripted.calls_for("organization_insight") == []

    def test_generates_when_everyone_in_quorum_completed(self, org, scripted):
        theme = _make_theme()
        for i in range(4):
            m = Member(organization_id=org.id, email=f"p{i}@acme.test")
            _db.session.add(m)
            _db.session.flush()
            conv = _make_completed(m, theme, age_days=0)
            _db.session.add(ConversationResult(conversation_id=conv.id, member_id=m.id,
                                               theme_id=theme.id, period_key=conv.period_key, score=8))
        _db.session.flush()

        outcome = SchedulerService.run_job("insight_auto_generate")

        assert outcome["result"]["generated"] == 1
        assert len(scripted.calls_for("organization_insight")) == 1
