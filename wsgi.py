"""
Flask-Migrate / Alembic entry point.

Usage:
    flask db migrate -m "description"
    flask db upgrade
    flask seed-stages
    flask seed-workflow
"""

from pms import create_app

app = create_app()
