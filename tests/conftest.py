#!/usr/bin/env python3
"""Shared fixtures: an in-memory application, a test client and record factories."""

import logging

import pytest

from signage import repository
from signage.auth import sign_up
from signage.db import db
from signage.logging_setup import setup_logging
from signage.validation import validate_data
from web.app import create_app

PASSWORD = "correct-horse"


@pytest.fixture(autouse=True, scope="session")
def console_logging():
    """Bind the console handler to the session stream before any capsys test runs."""
    setup_logging("INFO", loggers=[logging.getLogger("web.app"), logging.getLogger("werkzeug")])


@pytest.fixture
def app():
    """Application backed by a private in-memory SQLite database."""
    app = create_app(
        {
            "TESTING": True,
            "SECRET_KEY": "test",
            "SQLALCHEMY_DATABASE_URI": "sqlite://",
            "LOG_DIR": None,
            "PAGE_SIZE": 10,
        }
    )
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def ctx(app):
    """Run the test body inside an application context."""
    with app.app_context():
        yield app


@pytest.fixture
def client(app):
    return app.test_client()


# =============================================================================
# Record factories (call inside an application context)
# =============================================================================


def make_category(name="Displays", description=None):
    return repository.create_category({"name": name, "description": description})


def make_schedule(name="Quarterly clean", service_type="Cleaning", value=3, unit="month"):
    return repository.create_schedule(
        {
            "name": name,
            "service_type": service_type,
            "interval_value": value,
            "interval_unit": unit,
            "description": None,
        }
    )


def make_asset(category_id, name="Lobby Display", **fields):
    """Create an asset from schema-shaped input (dates as ISO strings)."""
    data = validate_data("asset", {"name": name, "category_id": category_id, **fields})
    return repository.create_asset(data)


def make_user(email="admin@example.com", password=PASSWORD, full_name=None):
    return sign_up(email, password, full_name)


def login(client, email="admin@example.com", password=PASSWORD):
    return client.post("/auth/sign-in", data={"email": email, "password": password})


@pytest.fixture
def admin_client(app, client):
    """Test client signed in as the first (admin) account."""
    with app.app_context():
        make_user()
    response = login(client)
    assert response.status_code == 302
    return client
