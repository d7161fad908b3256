"""
Organization conversation settings, teams and team membership.

Settings live on the Organization row with defaults
(active months [3, 6, 9], mandatory, active, anonymize after 60 days,
delete after 365 days).  Updates are partial and validated as a whole.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError

from checkin.core.exceptions import ConflictError, NotFoundError, ValidationError
from checkin.models import db
from checkin.models.audit import record_audit
from checkin.models.organization import Member, Team
from checkin.services import period_clock
from checkin.services.capability import Scope, require_capability
from checkin.services.theme_access import AccessResolver

logger = logging.getLogger(__name__)

SETTINGS_FIELDS = ("active_months", "mandatory", "active",
                   "anonymize_after_days", "delete_after_days", "description")


def _positive_int(data: dict, name: str, errors: dict):
    value = data[name]
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        errors[name] = "must be an integer >= 1"
        return None
    return value


class OrganizationSettingsService:
    """Settings and team administration for one organization."""

    def __init__(self, session=None, resolver=None, clock=None):
        self.session = session or db.session
        self.resolver = resolver or AccessResolver(self.session)
        self.clock = clock or period_clock.utcnow

    def _settings_payload(self, org) -> dict:
        nxt = period_clock.next_period(org.active_months, self.clock())
        return {
            "organization_id": org.id,
            **org.settings_dict(),
            "next_period": nxt.isoformat() if nxt else None,
        }

    def get_settings(self, actor, organization_id: int) -> dict:
        require_capability(actor, "settings.read", Scope(organization_id))
        return self._settings_payload(self.resolver.get_organization(organization_id))

    def update_settings(self, actor, organization_id: int, data: dict) -> dict:
        """Apply a partial settings update.

        Raises:
            ValidationError: unknown field or invalid value; nothing is changed.
        """
        require_capability(actor, "settings.write", Scope(organization_id))
        org = self.resolver.get_organization(organization_id)

        unknown = set(data) - set(SETTINGS_FIELDS)
        if unknown:
            raise ValidationError("Unknown settings fields", details={f: "unknown" for f in sorted(unknown)})

        errors: dict[str, str] = {}
        changes: dict = {}
        if "active_months" in data:
            try:
                changes["active_months"] = period_clock.validate_active_months(data["active_months"])
            except ValueError as exc:
                errors["active_months"] = str(exc)
        for flag in ("mandatory", "active"):
            if flag in data:
                if not isinstance(data[flag], bool):
                    errors[flag] = "must be a boolean"
                else:
                    changes[flag] = data[flag]
        for days in ("anonymize_after_days", "delete_after_days"):
            if days in data:
                value = _positive_int(data, days, errors)
                if value is not None:
                    changes[days] = value
        if "description" in data:
            if data["description"] is not None and not isinstance(data["description"], str):
                errors["description"] = "must be a string"
            else:
                changes["description"] = data["description"]

        anonymize = changes.get("anonymize_after_days", org.anonymize_after_days)
        delete = changes.get("delete_after_days", org.delete_after_days)
        if "anonymize_after_days" not in errors and "delete_after_days" not in errors and delete < anonymize:
            errors["delete_after_days"] = "must be >= anonymize_after_days"

        if errors:
            raise ValidationError("Invalid settings", details=errors)

        diff = {}
        for field, new in changes.items():
            old = getattr(org, field)
            if old != new:
                diff[field] = {"old": old, "new": new}
                setattr(org, field, new)
        self.session.flush()

        if diff:
            record_audit(
                entity_type="organization", entity_id=org.id, action="settings.update",
                actor=actor.email, actor_member_id=actor.id, organization_id=org.id,
                diff=diff, session=self.session,
            )
            logger.info("Organization %s settings updated: %s", org.id, sorted(diff))
        return self._settings_payload(org)

    # ── Teams ────────────────────────────────────────────────────────────

    def create_team(self, actor, organization_id: int, name) -> Team:
        require_capability(actor, "team.manage", Scope(organization_id))
        self.resolver.get_organization(organization_id)
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("name is required", details={"name": "required"})
        name = name.strip()
        if len(name) > 200:
            raise ValidationError("name is too long", details={"name": "max 200 characters"})

        team = Team(organization_id=organization_id, name=name)
        try:
            with self.session.begin_nested():
                self.session.add(team)
        except IntegrityError as exc:
            raise ConflictError("Team", "name", name) from exc

        record_audit(
            entity_type="team", entity_id=team.id, action="team.create",
            actor=actor.email, actor_member_id=actor.id, organization_id=organization_id,
            diff={"name": name}, session=self.session,
        )
        return team

    def archive_team(self, actor, organization_id: int, team_id: int) -> Team:
        require_capability(actor, "team.manage", Scope(organization_id))
        team = self.session.get(Team, team_id)
        if team is None or team.organization_id != organization_id:
            raise NotFoundError("Team", team_id, organization_id)
        if not team.archived:
            team.archived = True
            team.archived_at = datetime.now(timezone.utc)
            self.session.flush()
            record_audit(
                entity_type="team", entity_id=team.id, action="team.archive",
                actor=actor.email, actor_member_id=actor.id, organization_id=organization_id,
                session=self.session,
            )
        return team

    def assign_member_team(self, actor, organization_id: int, member_id: int, team_id: int | None) -> Member:
        """Link a member to a team (or unlink with ``team_id=None``).

        Raises:
            InvalidScope: team not in the org, or archived.
        """
        require_capability(actor, "team.manage", Scope(organization_id))
        member = self.session.get(Member, member_id)
        if member is None or member.organization_id != organization_id:
            raise NotFoundError("Member", member_id, organization_id)
        self.resolver.assert_team_in_org(organization_id, team_id)

        old = member.team_id
        member.team_id = team_id
        self.session.flush()
        self.session.refresh(member)
        record_audit(
            entity_type="member", entity_id=member.id, action="member.assign_team",
            actor=actor.email, actor_member_id=actor.id, organization_id=organization_id,
            diff={"team_id": {"old": old, "new": team_id}}, session=self.session,
        )
        return member
