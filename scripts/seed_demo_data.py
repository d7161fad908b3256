#!/usr/bin/env python3
"""
Check-in Platform: Demo Seed.

Creates one organization with two teams, a handful of members in every
role and three themes with fixed questions, so the API can be exercised
right away with ``X-Member-ID`` headers.

Usage:
    python scripts/seed_demo_data.py             # seed on top of the current DB
    python scripts/seed_demo_data.py --reset     # drop + create tables first
"""

import argparse
import sys

sys.path.insert(0, ".")

from checkin import create_app
from checkin.models import db
from checkin.models.organization import Member, Organization, Team
from checkin.models.theme import Theme, ThemeQuestion, ThemeOverride

THEMES = [
    {
        "title": "Workload",
        "goal": "Understand whether the amount of work is sustainable.",
        "scoring_rubric": "10 = fully sustainable, 1 = overloaded for weeks",
        "questions": [
            "How would you describe your workload over the last month?",
            "What takes more time than it should?",
        ],
    },
    {
        "title": "Energy",
        "goal": "Find what gives and costs the participant energy at work.",
        "scoring_rubric": "10 = energised, 1 = drained",
        "questions": [
            "Which moments this month gave you energy?",
            "What drained your energy the most?",
        ],
    },
    {
        "title": "Growth",
        "default_visibility": "closed",
        "gives_summary": False,
        "questions": ["What would you like to learn in the coming quarter?"],
    },
]

MEMBERS = [
    ("admin@demo.test", "Dana Admin", "org_admin", None),
    ("lead.blue@demo.test", "Lee Blue", "team_lead", "Blue"),
    ("sam@demo.test", "Sam", "member", "Blue"),
    ("kim@demo.test", "Kim", "member", "Blue"),
    ("ali@demo.test", "Ali", "member", "Green"),
    ("root@demo.test", "Platform Support", "super_admin", None),
]


def seed_organization():
    org = Organization(name="Demo Company", active_months=list(range(1, 13)),
                       description="Seeded demo organization")
    db.session.add(org)
    db.session.flush()

    teams = {}
    for name in ("Blue", "Green"):
        team = Team(organization_id=org.id, name=name)
        db.session.add(team)
        db.session.flush()
        teams[name] = team

    for email, full_name, role, team_name in MEMBERS:
        team = teams.get(team_name)
        db.session.add(Member(
            organization_id=org.id, email=email, full_name=full_name, role=role,
            team_id=team.id if team else None,
        ))
    db.session.flush()
    return org, teams


def seed_themes(org, teams):
    themes = []
    for order, theme_def in enumerate(THEMES):
        theme = Theme(
            title=theme_def["title"],
            goal=theme_def.get("goal", ""),
            scoring_rubric=theme_def.get("scoring_rubric", ""),
            default_visibility=theme_def.get("default_visibility", "open"),
            gives_summary=theme_def.get("gives_summary", True),
            sort_order=order,
        )
        db.session.add(theme)
        db.session.flush()
        for pos, text in enumerate(theme_def["questions"], start=1):
            db.session.add(ThemeQuestion(theme_id=theme.id, position=pos, text=text))
        themes.append(theme)

    # Growth is closed by default; open it for the Blue team only
    growth = themes[-1]
    db.session.add(ThemeOverride(organization_id=org.id, theme_id=growth.id,
                                 team_id=teams["Blue"].id, visible=True))
    db.session.flush()
    return themes


def main():
    parser = argparse.ArgumentParser(description="Seed check-in demo data")
    parser.add_argument("--reset", action="store_true", help="drop and recreate all tables first")
    args = parser.parse_args()

    app = create_app()
    with app.app_context():
        if args.reset:
            db.drop_all()
            db.create_all()
            print("Tables recreated")

        org, teams = seed_organization()
        themes = seed_themes(org, teams)
        db.session.commit()

        print(f"Organization {org.id}: {org.name}")
        for m in Member.query.filter_by(organization_id=org.id).order_by(Member.id):
            print(f"    member {m.id:<4} {m.role:<12} {m.email}")
        for t in themes:
            print(f"    theme  {t.id:<4} {t.title} [{t.default_visibility}]")


if __name__ == "__main__":
    main()
