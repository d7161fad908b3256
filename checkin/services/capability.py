"""
Capability checks: one function for every role/scope decision.

Uses ROLE_CAPABILITIES to decide whether an actor may perform an action,
then narrows by scope: organization, team and (for personal data) the
owning member.

Usage:
    from checkin.services.capability import Scope, require_capability

    require_capability(actor, "insight.generate", Scope(organization_id=3, team_id=7))

    decision = check_capability(actor, "theme_override.set", Scope(organization_id=3))
    if not decision.allowed:
        ...
"""

from dataclasses import dataclass

from checkin.core.exceptions import AccessDenied

_MEMBER_ACTIONS = {
    "conversation.create",
    "conversation.write",
    "conversation.read",
    "result.request",
    "result.read",
    "evaluation.create",
    "theme.list",
    "top_actions.read",
    "top_actions.generate",
}

_ADMIN_ACTIONS = {
    "theme_override.set",
    "theme.overview",
    "insight.read",
    "insight.generate",
    "settings.read",
    "settings.write",
    "team.manage",
}

ROLE_CAPABILITIES = {
    "member": _MEMBER_ACTIONS,
    "team_lead": _MEMBER_ACTIONS | {"theme.overview", "insight.read"},
    "org_admin": _MEMBER_ACTIONS | _ADMIN_ACTIONS,
    "super_admin": _MEMBER_ACTIONS | _ADMIN_ACTIONS | {"jobs.run", "theme.author"},
}

# Personal data: only the owning member, whatever their role
OWNER_ONLY_ACTIONS = {"conversation.write", "evaluation.create"}

# Personal data readable by the owner; super-admins may read for support
OWNER_SCOPED_ACTIONS = {
    "conversation.read", "result.request", "result.read",
    "top_actions.read", "top_actions.generate",
}

# Team leads only ever see their own team's scope
TEAM_BOUND_ROLES = {"team_lead"}


@dataclass(frozen=True)
class Scope:
    organization_id: int | None = None
    team_id: int | None = None
    member_id: int | None = None


@dataclass(frozen=True)
class CapabilityDecision:
    allowed: bool
    reason: str = "ok"

    def __bool__(self):
        return self.allowed


def check_capability(actor, action: str, scope: Scope | None = None) -> CapabilityDecision:
    """Decide whether ``actor`` may perform ``action`` within ``scope``."""
    scope = scope or Scope()

    if actor is None:
        return CapabilityDecision(False, "unauthenticated")

    role = actor.role or "member"
    if action not in ROLE_CAPABILITIES.get(role, set()):
        return CapabilityDecision(False, "role_lacks_capability")

    is_super = role == "super_admin"

    if action in OWNER_ONLY_ACTIONS:
        if scope.member_id is not None and scope.member_id != actor.id:
            return CapabilityDecision(False, "not_owner")
    elif action in OWNER_SCOPED_ACTIONS:
        if scope.member_id is not None and scope.member_id != actor.id and not is_super:
            return CapabilityDecision(False, "not_owner")

    if scope.organization_id is not None and not is_super:
        if scope.organization_id != actor.organization_id:
            return CapabilityDecision(False, "other_organization")

    if role in TEAM_BOUND_ROLES and action in ("theme.overview", "insight.read"):
        if scope.team_id is None:
            return CapabilityDecision(False, "team_scope_required")
        if scope.team_id != actor.team_id:
            return CapabilityDecision(False, "other_team")

    return CapabilityDecision(True)


def require_capability(actor, action: str, scope: Scope | None = None) -> None:
    """Raise AccessDenied unless the capability check passes."""
    decision = check_capability(actor, action, scope)
    if not decision.allowed:
        raise AccessDenied(getattr(actor, "id", None), action, decision.reason)
