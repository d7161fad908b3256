#!/usr/bin/env python3
"""Show DB record counts for all check-in tables."""
import sys
sys.path.insert(0, ".")

from checkin import create_app
from checkin.models import db

TABLES = [
    "organizations", "teams", "members", "themes", "theme_questions",
    "theme_overrides", "conversations", "conversation_history_items",
    "conversation_results", "theme_evaluations", "organization_insights",
    "top_actions_plans", "audit_logs", "ai_usage_logs", "scheduled_jobs",
]

app = create_app()
with app.app_context():
    total = 0
    for t in TABLES:
        c = db.session.execute(db.text(f"SELECT COUNT(*) FROM {t}")).scalar()
        total += c
        print(f"    {t:.<32} {c}")
    print(f"    {'TOTAL':.<32} {total}")
