"""
WSGI / Flask-Migrate entry point.

Usage:
    flask --app wsgi db upgrade
    flask --app wsgi purge-expired-sessions
    gunicorn wsgi:app
"""

from portorders import create_app

app = create_app()
