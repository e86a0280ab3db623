"""Pytest bootstrap configuration.

Ensure environment defaults are set before test collection and module
imports that depend on application settings.
"""
import os

import pytest

os.environ.setdefault("ENVIRONMENT", "test")


@pytest.fixture
def make_settings():
    """Build isolated settings (no .env file) with field overrides."""
    from core.config import Settings

    def _make(**overrides):
        overrides.setdefault("ENVIRONMENT", "test")
        return Settings(_env_file=None, **overrides)

    return _make


@pytest.fixture
def settings(make_settings):
    return make_settings()


@pytest.fixture
def make_app(make_settings):
    """Create a fresh application (own metrics registry and rate-limit storage)."""
    from main import create_app

    def _make(**overrides):
        return create_app(make_settings(**overrides))

    return _make


@pytest.fixture
def app(make_app):
    return make_app()


@pytest.fixture
def client(app):
    from fastapi.testclient import TestClient

    with TestClient(app) as c:
        yield c
