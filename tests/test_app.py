from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

import database
from main import app


def test_root(client):
    assert client.get("/").json() == {"message": "Storefront API is running"}


def test_database_errors_are_generic(client):
    @app.get("/_boom")
    def boom():
        raise OperationalError("SELECT secret FROM vault", {}, Exception("disk I/O error"))

    try:
        response = client.get("/_boom")
    finally:
        app.router.routes = [r for r in app.router.routes if getattr(r, "path", None) != "/_boom"]

    assert response.status_code == 500
    assert response.json() == {"detail": "Internal server error"}


def test_failed_request_rolls_back_session(monkeypatch):
    session = MagicMock()
    monkeypatch.setattr(database, "SessionLocal", lambda: session)

    dependency = database.get_db()
    assert next(dependency) is session
    with pytest.raises(OperationalError):
        dependency.throw(OperationalError("UPDATE products", {}, Exception("locked")))

    session.rollback.assert_called_once()
    session.close.assert_called_once()


def test_successful_request_only_closes_session(monkeypatch):
    session = MagicMock()
    monkeypatch.setattr(database, "SessionLocal", lambda: session)

    dependency = database.get_db()
    next(dependency)
    with pytest.raises(StopIteration):
        next(dependency)

    session.rollback.assert_not_called()
    session.close.assert_called_once()
