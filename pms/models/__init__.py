"""
Project Management System
SQLAlchemy extension instance shared by every model module.

Usage:
    from pms.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
