"""Shared fixtures: an in-memory SQLite app with a fresh schema per test."""

import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SECRET_KEY"] = "test-secret"
os.environ["ADMIN_PASSWORD"] = ""
os.environ["LIST_CATEGORIES"] = "main:200,challenge:100,unrated:200,upcoming:200"
os.environ.pop("DISCORD_WEBHOOK_URL", None)

import pytest
from flask import g
from flask.testing import FlaskClient
from werkzeug.security import generate_password_hash

from app import app as flask_app, ranking_engine, record_service
from models import db, User

PASSWORD = "password123"


@pytest.fixture
def app():
    flask_app.config.update(TESTING=True, COMPACT_ON_DELETE=False, DISCORD_WEBHOOK_URL=None)
    with flask_app.app_context():
        db.drop_all()
        db.create_all()
        yield flask_app
        db.session.remove()


class Client(FlaskClient):
    """Test client that reloads the logged-in user on every request.

    The fixture app context stays pushed during requests, so Flask-Login's
    cached user on ``g`` would otherwise outlive a login or logout.
    """

    def open(self, *args, **kwargs):
        g.pop("_login_user", None)
        return super().open(*args, **kwargs)


@pytest.fixture
def client(app):
    app.test_client_class = Client
    return app.test_client()


@pytest.fixture
def engine(app):
    return ranking_engine()


@pytest.fixture
def records(app):
    return record_service()


@pytest.fixture
def make_user(app):
    def _make(name, is_admin=False, is_moderator=False):
        user = User(
            name=name,
            email=f"{name.lower()}@test.com",
            password_hash=generate_password_hash(PASSWORD, method="pbkdf2:sha256:1000"),
            is_admin=is_admin,
            is_moderator=is_moderator,
        )
        db.session.add(user)
        db.session.commit()
        return user
    return _make


@pytest.fixture
def fill(engine):
    """Append ``count`` levels named ``<prefix>1..N`` to a category, top first."""
    def _fill(category, count, prefix=None):
        prefix = prefix or category
        start = len(engine.list_levels(category))
        return [
            engine.insert_level(
                {"name": f"{prefix}{start + i}", "creator": "someone", "difficulty": "Hard"},
                start + i,
                category,
            )
            for i in range(1, count + 1)
        ]
    return _fill


def login(client, user):
    resp = client.post("/login", json={"email": user.email, "password": PASSWORD})
    assert resp.status_code == 200
    return resp


def positions(engine, category):
    return [(lv.name, lv.position) for lv in engine.list_levels(category)]
