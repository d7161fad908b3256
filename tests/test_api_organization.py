"""
Check-in Platform
Tests: organization and admin APIs (Blueprints: organization_bp, admin_jobs_bp).

Covers:
    - settings read/update with validation
    - teams: create, duplicate, archive, member assignment
    - theme overrides and allowed themes
    - insight quorum errors and team-lead scoping
    - member results view per period
    - admin job endpoints and theme authoring (super-admin only)
"""

import pytest

from checkin.ai import gateway as gateway_module
from checkin.models import db as _db
from checkin.models.organization import Member, Organization, Team
from checkin.models.theme import Theme


@pytest.fixture(autouse=True)
def scripted(monkeypatch, gateway):
    monkeypatch.setattr(gateway_module, "_default_gateway", gateway)
    return gateway


def _make_org(name="Acme"):
    o = Organization(name=name, active_months=[3, 6, 9])
    _db.session.add(o)
    _db.session.commit()
    return o


def _make_member(org, email, role="member", team=None):
    m = Member(organization_id=org.id, email=email, role=role, team_id=team.id if team else None)
    _db.session.add(m)
    _db.session.commit()
    return m


def _make_theme(title="Workload"):
    t = Theme(title=title)
    _db.session.add(t)
    _db.session.commit()
    return t


def _make_team(org, name="Blue"):
    t = Team(organization_id=org.id, name=name)
    _db.session.add(t)
    _db.session.commit()
    return t


def _auth(member):
    return {"X-Member-ID": str(member.id)}


@pytest.fixture()
def acme():
    return _make_org()


@pytest.fixture()
def admin(acme):
    return _make_member(acme, "admin@acme.test", role="org_admin")


# ═════════════════════════════════════════════════════════════════════════════
# SETTINGS
# ═════════════════════════════════════════════════════════════════════════════

class TestSettings:
    def test_admin_reads_settings(self, client, acme, admin):
        res = client.get(f"/api/v1/organizations/{acme.id}/settings", headers=_auth(admin))
        assert res.status_code == 200
        body = res.get_json()
        assert body["active_months"] == [3, 6, 9]
        assert body["next_period"] is not None

    def test_member_is_forbidden(self, client, acme):
        member = _make_member(acme, "m@acme.test")
        res = client.get(f"/api/v1/organizations/{acme.id}/settings", headers=_auth(member))
        assert res.status_code == 403
        assert res.get_json()["details"]["reason"] == "role_lacks_capability"

    def test_other_organization_is_forbidden(self, client, admin):
        other = _make_org("Globex")
        res = client.get(f"/api/v1/organizations/{other.id}/settings", headers=_auth(admin))
        assert res.status_code == 403
        assert res.get_json()["details"]["reason"] == "other_organization"

    def test_update(self, client, acme, admin):
        res = client.put(f"/api/v1/organizations/{acme.id}/settings",
                         json={"active_months": [12, 1, 1], "anonymize_after_days": 45},
                         headers=_auth(admin))
        assert res.status_code == 200
        body = res.get_json()
        assert body["active_months"] == [1, 12]
        assert body["anonymize_after_days"] == 45

    @pytest.mark.parametrize("payload,field", [
        ({"colour": "red"}, "colour"),
        ({"active_months": [13]}, "active_months"),
        ({"anonymize_after_days": 30, "delete_after_days": 10}, "delete_after_days"),
        ({"mandatory": "yes"}, "mandatory"),
    ])
    def test_rejects_invalid(self, client, acme, admin, payload, field):
        res = client.put(f"/api/v1/organizations/{acme.id}/settings", json=payload, headers=_auth(admin))
        assert res.status_code == 400
        assert field in res.get_json()["details"]


# ═════════════════════════════════════════════════════════════════════════════
# TEAMS
# ═════════════════════════════════════════════════════════════════════════════

class TestTeams:
    def test_create_and_duplicate(self, client, acme, admin):
        url = f"/api/v1/organizations/{acme.id}/teams"
        res = client.post(url, json={"name": "Blue"}, headers=_auth(admin))
        assert res.status_code == 201
        assert res.get_json()["archived"] is False

        res = client.post(url, json={"name": "Blue"}, headers=_auth(admin))
        assert res.status_code == 409

    def test_archived_team_cannot_take_members(self, client, acme, admin):
        team = _make_team(acme)
        member = _make_member(acme, "m@acme.test")

        res = client.post(f"/api/v1/organizations/{acme.id}/teams/{team.id}/archive", headers=_auth(admin))
        assert res.get_json()["archived"] is True

        res = client.put(f"/api/v1/organizations/{acme.id}/members/{member.id}/team",
                         json={"team_id": team.id}, headers=_auth(admin))
        assert res.status_code == 422
        assert res.get_json()["code"] == "ERR_INVALID_SCOPE"

    def test_assign_and_unassign(self, client, acme, admin):
        team = _make_team(acme)
        member = _make_member(acme, "m@acme.test")
        url = f"/api/v1/organizations/{acme.id}/members/{member.id}/team"

        assert client.put(url, json={"team_id": team.id}, headers=_auth(admin)).status_code == 200
        res = client.put(url, json={"team_id": None}, headers=_auth(admin))
        assert res.status_code == 200
        assert _db.session.get(Member, member.id).team_id is None

    def test_team_of_other_org_is_invalid(self, client, acme, admin):
        foreign = _make_team(_make_org("Globex"), "Red")
        member = _make_member(acme, "m@acme.test")
        res = client.put(f"/api/v1/organizations/{acme.id}/members/{member.id}/team",
                         json={"team_id": foreign.id}, headers=_auth(admin))
        assert res.status_code == 422


# ═════════════════════════════════════════════════════════════════════════════
# THEME ACCESS
# ═════════════════════════════════════════════════════════════════════════════

class TestThemeAccess:
    def test_override_hides_theme(self, client, acme, admin):
        kept = _make_theme("Energy")
        hidden = _make_theme("Workload")

        res = client.put(f"/api/v1/organizations/{acme.id}/themes/{hidden.id}/override",
                         json={"visible": False}, headers=_auth(admin))
        assert res.status_code == 200

        res = client.get(f"/api/v1/organizations/{acme.id}/allowed-themes", headers=_auth(admin))
        assert res.get_json()["theme_ids"] == [kept.id]

    def test_visible_must_be_boolean(self, client, acme, admin):
        theme = _make_theme()
        res = client.put(f"/api/v1/organizations/{acme.id}/themes/{theme.id}/override",
                         json={"visible": "no"}, headers=_auth(admin))
        assert res.status_code == 400

    def test_member_cannot_override(self, client, acme):
        member = _make_member(acme, "m@acme.test")
        theme = _make_theme()
        res = client.put(f"/api/v1/organizations/{acme.id}/themes/{theme.id}/override",
                         json={"visible": False}, headers=_auth(member))
        assert res.status_code == 403


# ═════════════════════════════════════════════════════════════════════════════
# INSIGHTS
# ═════════════════════════════════════════════════════════════════════════════

class TestInsights:
    def test_generate_below_quorum(self, client, acme, admin, scripted):
        theme = _make_theme()
        res = client.post(f"/api/v1/organizations/{acme.id}/themes/{theme.id}/insight", headers=_auth(admin))
        assert res.status_code == 422
        body = res.get_json()
        assert body["code"] == "ERR_INSUFFICIENT_QUORUM"
        assert body["details"] == {"observed": 0, "required": 4}
        assert scripted.calls_for("organization_insight") == []

    def test_read_missing_insight(self, client, acme, admin):
        theme = _make_theme()
        res = client.get(f"/api/v1/organizations/{acme.id}/themes/{theme.id}/insight", headers=_auth(admin))
        assert res.status_code == 404

    def test_overview_lists_themes(self, client, acme, admin):
        _make_theme()
        res = client.get(f"/api/v1/organizations/{acme.id}/themes", headers=_auth(admin))
        assert res.status_code == 200
        assert res.get_json()["themes"][0]["status"] == "not_available"

    def test_team_lead_needs_own_team(self, client, acme):
        team = _make_team(acme)
        lead = _make_member(acme, "lead@acme.test", role="team_lead", team=team)
        theme = _make_theme()
        url = f"/api/v1/organizations/{acme.id}/themes/{theme.id}/insight"

        res = client.get(url, headers=_auth(lead))
        assert res.status_code == 403
        assert res.get_json()["details"]["reason"] == "team_scope_required"
        assert client.get(f"{url}?team_id={team.id}", headers=_auth(lead)).status_code == 404


# ═════════════════════════════════════════════════════════════════════════════
# TOP ACTIONS
# ═════════════════════════════════════════════════════════════════════════════

class TestTopActions:
    def test_missing_plan(self, client, acme):
        member = _make_member(acme, "m@acme.test")
        res = client.get(f"/api/v1/members/{member.id}/top-actions?period=2025-06", headers=_auth(member))
        assert res.status_code == 404

    def test_bad_period(self, client, acme):
        member = _make_member(acme, "m@acme.test")
        res = client.get(f"/api/v1/members/{member.id}/top-actions?period=June", headers=_auth(member))
        assert res.status_code == 400

    def test_generate_without_completed_conversations(self, client, acme):
        member = _make_member(acme, "m@acme.test")
        res = client.post(f"/api/v1/members/{member.id}/top-actions",
                          json={"period": "2025-06"}, headers=_auth(member))
        assert res.status_code == 400

    def test_other_members_plan_is_forbidden(self, client, acme):
        owner = _make_member(acme, "m@acme.test")
        other = _make_member(acme, "n@acme.test")
        res = client.get(f"/api/v1/members/{owner.id}/top-actions", headers=_auth(other))
        assert res.status_code == 403


class TestMemberResults:
    def test_owner_sees_allowed_themes(self, client, acme):
        member = _make_member(acme, "m@acme.test")
        _make_theme()
        res = client.get(f"/api/v1/members/{member.id}/results?period=2025-06", headers=_auth(member))
        assert res.status_code == 200
        body = res.get_json()
        assert body["total_themes"] == 1
        assert body["results"][0]["has_result"] is False

    def test_colleague_is_forbidden(self, client, acme):
        owner = _make_member(acme, "m@acme.test")
        other = _make_member(acme, "n@acme.test")
        res = client.get(f"/api/v1/members/{owner.id}/results", headers=_auth(other))
        assert res.status_code == 403

    def test_super_admin_reads_for_support(self, client, acme):
        owner = _make_member(acme, "m@acme.test")
        root = _make_member(acme, "root@acme.test", role="super_admin")
        res = client.get(f"/api/v1/members/{owner.id}/results", headers=_auth(root))
        assert res.status_code == 200


# ═════════════════════════════════════════════════════════════════════════════
# ADMIN JOBS
# ═════════════════════════════════════════════════════════════════════════════

class TestAdminJobs:
    def test_requires_super_admin(self, client, admin):
        res = client.get("/api/v1/admin/jobs", headers=_auth(admin))
        assert res.status_code == 403

    def test_list_run_and_toggle(self, client, acme):
        root = _make_member(acme, "root@acme.test", role="super_admin")

        res = client.get("/api/v1/admin/jobs", headers=_auth(root))
        assert res.status_code == 200
        assert res.get_json()["total"] == 4

        res = client.post("/api/v1/admin/jobs/retention_anonymize/run", headers=_auth(root))
        assert res.status_code == 200
        assert res.get_json()["status"] == "success"

        assert client.post("/api/v1/admin/jobs/defragment/run", headers=_auth(root)).status_code == 404
        assert client.post("/api/v1/admin/jobs/retention_delete/toggle", json={},
                           headers=_auth(root)).status_code == 400


# ═════════════════════════════════════════════════════════════════════════════
# THEME CATALOGUE
# ═════════════════════════════════════════════════════════════════════════════

class TestThemeCatalog:
    def test_super_admin_creates_theme(self, client, acme):
        root = _make_member(acme, "root@acme.test", role="super_admin")
        res = client.post("/api/v1/admin/themes", json={
            "title": "Energy", "default_visibility": "restricted",
            "questions": ["What gives you energy?", {"text": "What drains it?"}],
        }, headers=_auth(root))
        assert res.status_code == 201
        body = res.get_json()
        assert body["default_visibility"] == "restricted"
        assert [q["position"] for q in body["questions"]] == [1, 2]

    def test_org_admin_cannot_author(self, client, admin):
        res = client.post("/api/v1/admin/themes", json={"title": "Energy", "questions": ["Q?"]},
                          headers=_auth(admin))
        assert res.status_code == 403
        assert Theme.query.count() == 0

    def test_six_questions_are_refused(self, client, acme):
        root = _make_member(acme, "root@acme.test", role="super_admin")
        res = client.post("/api/v1/admin/themes", json={
            "title": "Energy", "questions": [f"Question {i}?" for i in range(6)],
        }, headers=_auth(root))
        assert res.status_code == 400
        assert "questions" in res.get_json()["details"]
        assert Theme.query.count() == 0

    def test_update_unknown_theme(self, client, acme):
        root = _make_member(acme, "root@acme.test", role="super_admin")
        res = client.put("/api/v1/admin/themes/999", json={"title": "Gone"}, headers=_auth(root))
        assert res.status_code == 404
