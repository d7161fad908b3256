"""
Theme access resolution.

Decides which themes an organization (optionally narrowed to a team) may
use.  A theme must be ready.  Its default visibility is then adjusted by
overrides, and the most specific applicable override wins:

    team override (when a team is given)  >  org-wide override  >  default

    open theme        → allowed unless the winning override says visible=False
    restricted theme  → denied unless the winning override says visible=True

``check`` and ``list_allowed`` share the same resolution so a theme is in
the list exactly when the single check allows it.

Mutation (``set_override``) is an upsert keyed by
(organization, theme, team|null) and is never part of the read path.
"""

import logging

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError

from checkin.core.exceptions import InvalidScope, NotFoundError, TransientStoreConflict, ValidationError
from checkin.models import db
from checkin.models.audit import record_audit
from checkin.models.organization import Organization, Team
from checkin.models.theme import Theme, ThemeOverride
from checkin.services.capability import Scope, require_capability
from checkin.utils.retry import retry_with_backoff

logger = logging.getLogger(__name__)


def _effective_visibility(theme: Theme, team_override, org_override) -> bool:
    if not theme.is_ready:
        return False
    winner = team_override if team_override is not None else org_override
    if winner is not None:
        return bool(winner.visible)
    return theme.default_visibility == "open"


class AccessResolver:
    """Theme visibility for an org/team scope.

    Args:
        session: SQLAlchemy session; defaults to ``db.session``.
    """

    def __init__(self, session=None):
        self.session = session or db.session

    # ── Scope validation ─────────────────────────────────────────────────

    def get_organization(self, organization_id: int) -> Organization:
        org = self.session.get(Organization, organization_id)
        if org is None:
            raise NotFoundError("Organization", organization_id)
        return org

    def assert_team_in_org(self, organization_id: int, team_id: int | None) -> Team | None:
        """Return the team when it is a usable scope for the org.

        Raises:
            InvalidScope: team missing, owned by another org, or archived.
        """
        if team_id is None:
            return None
        team = self.session.get(Team, team_id)
        if team is None or team.organization_id != organization_id:
            raise InvalidScope(team_id, organization_id, "team does not belong to organization")
        if team.archived:
            raise InvalidScope(team_id, organization_id, "team is archived")
        return team

    # ── Read path ────────────────────────────────────────────────────────

    def _overrides(self, organization_id: int, team_id: int | None, theme_ids=None):
        """Return {theme_id: (team_override, org_override)} for the scope."""
        q = self.session.query(ThemeOverride).filter(ThemeOverride.organization_id == organization_id)
        if team_id is None:
            q = q.filter(ThemeOverride.team_id.is_(None))
        else:
            q = q.filter(or_(ThemeOverride.team_id.is_(None), ThemeOverride.team_id == team_id))
        if theme_ids is not None:
            q = q.filter(ThemeOverride.theme_id.in_(theme_ids))

        by_theme: dict[int, list] = {}
        for ov in q.all():
            pair = by_theme.setdefault(ov.theme_id, [None, None])
            if ov.team_id is None:
                pair[1] = ov
            else:
                pair[0] = ov
        return by_theme

    def check(self, organization_id: int, theme_id: int, team_id: int | None = None) -> bool:
        """Single-theme check.

        Raises:
            NotFoundError: unknown organization or theme.
            InvalidScope: team not owned by the org, or archived.
        """
        self.get_organization(organization_id)
        theme = self.session.get(Theme, theme_id)
        if theme is None:
            raise NotFoundError("Theme", theme_id)
        self.assert_team_in_org(organization_id, team_id)

        if not theme.is_ready:
            return False
        team_ov, org_ov = self._overrides(organization_id, team_id, [theme_id]).get(theme_id, (None, None))
        return _effective_visibility(theme, team_ov, org_ov)

    def list_allowed_themes(self, organization_id: int, team_id: int | None = None) -> list[Theme]:
        """Allowed, ready themes for the scope ordered by ``sort_order``."""
        self.get_organization(organization_id)
        self.assert_team_in_org(organization_id, team_id)

        themes = (
            self.session.query(Theme)
            .filter(Theme.is_ready.is_(True))
            .order_by(Theme.sort_order, Theme.id)
            .all()
        )
        overrides = self._overrides(organization_id, team_id)
        return [
            t for t in themes
            if _effective_visibility(t, *overrides.get(t.id, (None, None)))
        ]

    def list_allowed(self, organization_id: int, team_id: int | None = None) -> list[int]:
        return [t.id for t in self.list_allowed_themes(organization_id, team_id)]

    # ── Mutation ─────────────────────────────────────────────────────────

    def set_override(self, organization_id: int, theme_id: int, team_id: int | None,
                     visible: bool, *, attempts: int = 3, delay: float = 0.0) -> ThemeOverride:
        """Upsert the override for (organization, theme, team|null).

        Update first; insert when nothing matched; a lost insert race is
        retried through the shared backoff utility.
        """
        self.get_organization(organization_id)
        if self.session.get(Theme, theme_id) is None:
            raise NotFoundError("Theme", theme_id)
        self.assert_team_in_org(organization_id, team_id)

        def _attempt(_attempt_no):
            team_clause = (ThemeOverride.team_id.is_(None) if team_id is None
                           else ThemeOverride.team_id == team_id)
            result = self.session.execute(
                update(ThemeOverride)
                .where(ThemeOverride.organization_id == organization_id,
                       ThemeOverride.theme_id == theme_id,
                       team_clause)
                .values(visible=bool(visible))
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                with self.session.begin_nested():
                    self.session.add(ThemeOverride(
                        organization_id=organization_id, theme_id=theme_id,
                        team_id=team_id, visible=bool(visible),
                    ))
            return (
                self.session.query(ThemeOverride)
                .filter(ThemeOverride.organization_id == organization_id,
                        ThemeOverride.theme_id == theme_id,
                        team_clause)
                .populate_existing()
                .one()
            )

        override = retry_with_backoff(
            _attempt, attempts=attempts, delay=delay, retry_on=(IntegrityError,),
            on_exhausted=lambda exc: TransientStoreConflict(
                "ThemeOverride", (organization_id, theme_id, team_id), attempts),
            label="theme override upsert",
        )
        logger.info("Theme override set: org=%s theme=%s team=%s visible=%s",
                    organization_id, theme_id, team_id, visible)
        return override


# ── Actor-facing operations ──────────────────────────────────────────────────

def list_allowed_for(actor, organization_id: int, team_id: int | None = None,
                     resolver: AccessResolver | None = None) -> list[int]:
    require_capability(actor, "theme.list", Scope(organization_id))
    return (resolver or AccessResolver()).list_allowed(organization_id, team_id)


def set_theme_override(actor, organization_id: int, theme_id: int, team_id: int | None,
                       visible, resolver: AccessResolver | None = None) -> ThemeOverride:
    require_capability(actor, "theme_override.set", Scope(organization_id))
    if not isinstance(visible, bool):
        raise ValidationError("visible must be a boolean", details={"visible": "required"})
    resolver = resolver or AccessResolver()
    override = resolver.set_override(organization_id, theme_id, team_id, visible)
    record_audit(
        entity_type="theme_override", entity_id=override.id, action="theme_override.set",
        actor=actor.email, actor_member_id=actor.id, organization_id=organization_id,
        diff={"theme_id": theme_id, "team_id": team_id, "visible": visible},
        session=resolver.session,
    )
    return override
