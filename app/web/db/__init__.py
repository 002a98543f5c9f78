"""
Database handle shared by the models, services and views.

Usage:
    from app.web.db import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
