#!/usr/bin/env python3
"""
Database initialization script for Portfolio Tracker.
Creates all database tables and the initial admin account.

Usage:
    python init_db.py

Make sure DATABASE_URL environment variable is set. ADMIN_EMAIL and
ADMIN_PASSWORD choose the admin credentials; without ADMIN_PASSWORD a
random password is generated and printed once.
"""

import secrets

from app import create_app
from models import db
from store import PortfolioStore


def seed_admin(store, email, password, bcrypt_rounds=12):
    """
    Create the admin account, or promote an existing user with that email.
    Returns (user, created).
    """
    user = store.find_user_by_email(email)
    if user:
        if not user.is_admin:
            store.update_user_role(user.id, 'admin')
        return user, False

    user = store.create_user(email, password, name='Administrator', role='admin', bcrypt_rounds=bcrypt_rounds)
    return user, True


def init_database():
    """Initialize the database by creating all tables and the admin user."""
    app = create_app()

    with app.app_context():
        print("Connecting to database...")
        print(f"Database URI: {app.config['SQLALCHEMY_DATABASE_URI'][:50]}...")

        # Create all tables
        db.create_all()

        print("Database tables created successfully!")
        print("\nTables created:")
        for table in db.metadata.sorted_tables:
            print(f"  - {table.name}")

        email = app.config['ADMIN_EMAIL']
        password = app.config['ADMIN_PASSWORD'] or secrets.token_urlsafe(12)
        user, created = seed_admin(PortfolioStore(db.session), email, password, app.config['BCRYPT_ROUNDS'])

        if created:
            print(f"\nAdmin account created: {user.email}")
            if not app.config['ADMIN_PASSWORD']:
                print(f"Generated password: {password}")
        else:
            print(f"\nAdmin account already exists: {user.email}")


if __name__ == '__main__':
    init_database()
