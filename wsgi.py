"""
WSGI and Flask-Migrate / Alembic entry point.

Usage:
    gunicorn wsgi:app
    flask --app wsgi db init       # first time only (creates migrations/)
    flask --app wsgi db migrate -m "description"
    flask --app wsgi db upgrade
    flask --app wsgi register-tenant --id ACME --name "Acme" --admin-email admin@acme.com
"""

from qahub import create_app

app = create_app()
