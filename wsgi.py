"""
WSGI / Flask-Migrate entry point.

Usage:
    flask --app wsgi db migrate -m "description"
    flask --app wsgi db upgrade
    flask --app wsgi create-user "Ada Tester" ada@example.com --role tester
    flask --app wsgi issue-token ada@example.com
"""

from bugtracker import create_app

app = create_app()
