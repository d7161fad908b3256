"""
Check-in Platform
Completion-service accounting: one AIUsageLog row per gateway call.
"""

from datetime import datetime, timezone

from checkin.models import db

# USD per 1M tokens as (prompt, completion); unknown models cost nothing
MODEL_PRICES = {
    "gpt-4o-mini": (0.15, 0.60),
    "gpt-4o": (2.50, 10.00),
    "claude-3-5-haiku-20241022": (1.00, 5.00),
    "claude-3-5-sonnet-20241022": (3.00, 15.00),
}


def calculate_cost(model: str, prompt_tokens: int, completion_tokens: int) -> float:
    prompt_price, completion_price = MODEL_PRICES.get(model, (0.0, 0.0))
    return (prompt_tokens * prompt_price + completion_tokens * completion_price) / 1_000_000


class AIUsageLog(db.Model):
    """Tokens, cost, latency and outcome of a single completion call.

    ``purpose`` is the prompt task (followup_decision, conversation_summary, ...)
    and ``user`` the member e-mail or ``system`` for background jobs.  Failed
    calls are logged too, with ``success=False`` and the last error.
    """

    __tablename__ = "ai_usage_logs"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id", ondelete="SET NULL"),
                                nullable=True, index=True)
    purpose = db.Column(db.String(100), default="")
    user = db.Column(db.String(150), default="system")

    provider = db.Column(db.String(30), nullable=False)
    model = db.Column(db.String(80), nullable=False)
    prompt_tokens = db.Column(db.Integer, default=0)
    completion_tokens = db.Column(db.Integer, default=0)
    total_tokens = db.Column(db.Integer, default=0)
    cost_usd = db.Column(db.Float, default=0.0)
    latency_ms = db.Column(db.Integer, default=0)

    success = db.Column(db.Boolean, default=True)
    error_message = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    _PLAIN_FIELDS = (
        "id", "organization_id", "purpose", "user", "provider", "model",
        "prompt_tokens", "completion_tokens", "total_tokens", "latency_ms",
        "success", "error_message",
    )

    def to_dict(self):
        data = {name: getattr(self, name) for name in self._PLAIN_FIELDS}
        data["cost_usd"] = round(self.cost_usd or 0.0, 6)
        data["created_at"] = self.created_at.isoformat() if self.created_at else None
        return data

    def __repr__(self):
        return f"<AIUsageLog {self.purpose} {self.model} ok={self.success}>"
