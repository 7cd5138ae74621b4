"""
Bug Tracker
SQLAlchemy extension instance shared by every model module.

Usage:
    from bugtracker.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
