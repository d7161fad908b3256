"""
Check-in Platform
Tests: role/scope capability checks.
"""

from types import SimpleNamespace

import pytest

from checkin.core.exceptions import AccessDenied
from checkin.services.capability import Scope, check_capability, require_capability


def _actor(role="member", org_id=1, team_id=None, member_id=10):
    return SimpleNamespace(id=member_id, role=role, organization_id=org_id, team_id=team_id)


class TestRoles:
    def test_member_cannot_set_overrides(self):
        decision = check_capability(_actor(), "theme_override.set", Scope(1))
        assert not decision
        assert decision.reason == "role_lacks_capability"

    def test_org_admin_manages_own_org_only(self):
        admin = _actor("org_admin")
        assert check_capability(admin, "settings.write", Scope(1))
        assert check_capability(admin, "settings.write", Scope(2)).reason == "other_organization"

    def test_super_admin_crosses_organizations(self):
        assert check_capability(_actor("super_admin"), "insight.generate", Scope(99))

    def test_only_super_admin_runs_jobs(self):
        assert not check_capability(_actor("org_admin"), "jobs.run")
        assert check_capability(_actor("super_admin"), "jobs.run")

    def test_only_super_admin_authors_themes(self):
        assert check_capability(_actor("org_admin"), "theme.author").reason == "role_lacks_capability"
        assert check_capability(_actor("super_admin"), "theme.author")

    def test_unauthenticated(self):
        assert check_capability(None, "theme.list").reason == "unauthenticated"


class TestPersonalData:
    def test_owner_writes_own_conversation(self):
        assert check_capability(_actor(), "conversation.write", Scope(1, member_id=10))

    def test_admin_cannot_write_someone_elses_conversation(self):
        admin = _actor("org_admin", member_id=11)
        assert check_capability(admin, "conversation.write", Scope(1, member_id=10)).reason == "not_owner"

    def test_super_admin_reads_but_never_writes_for_others(self):
        sa = _actor("super_admin", member_id=1)
        assert check_capability(sa, "conversation.read", Scope(1, member_id=10))
        assert not check_capability(sa, "conversation.write", Scope(1, member_id=10))


class TestTeamLead:
    def test_needs_team_scope_for_overview(self):
        lead = _actor("team_lead", team_id=5)
        assert check_capability(lead, "theme.overview", Scope(1)).reason == "team_scope_required"

    def test_limited_to_own_team(self):
        lead = _actor("team_lead", team_id=5)
        assert check_capability(lead, "insight.read", Scope(1, team_id=5))
        assert check_capability(lead, "insight.read", Scope(1, team_id=6)).reason == "other_team"

    def test_cannot_generate_insights(self):
        lead = _actor("team_lead", team_id=5)
        assert not check_capability(lead, "insight.generate", Scope(1, team_id=5))


def test_require_capability_raises_with_reason():
    with pytest.raises(AccessDenied) as exc:
        require_capability(_actor(), "settings.read", Scope(1))
    assert exc.value.reason == "role_lacks_capability"
    assert exc.value.action == "settings.read"
