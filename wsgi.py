"""
WSGI / Flask-Migrate entry point.

Usage:
    flask --app wsgi db migrate -m "description"
    flask --app wsgi db upgrade
    flask --app wsgi seed-stages
    gunicorn wsgi:app
"""

from piecetrack import create_app

app = create_app()
