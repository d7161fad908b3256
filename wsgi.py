"""
Flask-Migrate / Alembic entry point.

Usage:
    flask db init       # first time only (creates migrations/)
    flask db migrate -m "description"
    flask db upgrade
    flask run-jobs      # run every enabled background job once
"""

from checkin import create_app

app = create_app()
