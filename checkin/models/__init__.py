"""
Check-in Platform
SQLAlchemy handle shared by every model module.

Usage:
    from checkin.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
