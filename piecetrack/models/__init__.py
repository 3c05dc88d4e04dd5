"""
Piece Mark Production Tracker
Shared SQLAlchemy handle.

Every model module imports ``db`` from here; ``create_app`` binds it to
the Flask application with ``db.init_app(app)``.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
