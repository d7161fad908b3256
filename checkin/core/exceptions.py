"""
Platform-wide exception hierarchy.

Services raise these types; blueprints register handlers against them
once and get consistent HTTP status codes everywhere.

Usage:
    from checkin.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Conversation", resource_id=42)
    raise ValidationError("reason is required", details={"reason": "..."})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist within the given scope.

    Security note: also used when a conversation belongs to another member,
    so a caller cannot confirm that the id exists.

    Args:
        resource: Human-readable entity name (e.g. "Theme", "Conversation").
        resource_id: The PK that was looked up. Included in logs, not in HTTP response.
        organization_id: Optional scope that was enforced, for debug logging only.
    """

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        organization_id: int | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.organization_id = organization_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        if organization_id is not None:
            msg += f" (organization={organization_id})"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input is malformed or violates a business rule.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised on duplicate-key or state conflicts (second conversation in a
    period, double completion, repeated evaluation).

    Maps to HTTP 409.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class StateConflictError(ConflictError):
    """Conflict caused by the current lifecycle state rather than a duplicate."""

    def __init__(self, resource: str, resource_id, state: str) -> None:
        self.resource = resource
        self.field = "status"
        self.value = state
        self.resource_id = resource_id
        Exception.__init__(self, f"{resource} id={resource_id} is {state}")


class AccessDenied(Exception):
    """Raised when the actor lacks the capability for the requested scope.

    Args:
        actor_id: Member id (or None for anonymous).
        action: Capability name (e.g. "conversation.create").
        reason: Short machine-friendly reason from the capability check.
    """

    def __init__(self, actor_id, action: str, reason: str = "forbidden") -> None:
        self.actor_id = actor_id
        self.action = action
        self.reason = reason
        super().__init__(f"Member {actor_id} may not {action}: {reason}")


class InvalidScope(Exception):
    """Raised when a team scope does not belong to the organization or is archived."""

    def __init__(self, team_id, organization_id, reason: str) -> None:
        self.team_id = team_id
        self.organization_id = organization_id
        self.reason = reason
        super().__init__(f"Team {team_id} is not a valid scope for organization {organization_id}: {reason}")


class InsufficientQuorum(Exception):
    """Domain outcome: too few distinct members to expose an aggregate."""

    def __init__(self, observed: int, required: int) -> None:
        self.observed = observed
        self.required = required
        super().__init__(f"Insufficient data: {observed} of {required} required members")


class UpstreamContractViolation(Exception):
    """The completion service answered, but not with the agreed schema."""

    def __init__(self, purpose: str, message: str, raw: str | None = None) -> None:
        self.purpose = purpose
        self.raw = raw
        super().__init__(f"{purpose}: {message}")


class UpstreamUnavailable(Exception):
    """An external collaborator could not be reached or returned non-2xx."""

    def __init__(self, service: str, message: str) -> None:
        self.service = service
        super().__init__(f"{service} unavailable: {message}")


class TransientStoreConflict(Exception):
    """A keyed write kept losing races after the retry budget was spent."""

    def __init__(self, resource: str, key, attempts: int) -> None:
        self.resource = resource
        self.key = key
        self.attempts = attempts
        super().__init__(f"{resource} {key!r}: write conflict persisted after {attempts} attempts")


class PersonalDataBlocked(ValidationError):
    """An answer was rejected by PII screening; nothing was persisted."""

    def __init__(self, labels: list[str], source: str) -> None:
        self.labels = labels
        self.source = source
        super().__init__(
            "Answer contains personal data and was not saved",
            details={"labels": labels, "source": source},
        )
