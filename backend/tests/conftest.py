"""Pytest configuration and fixtures."""

import os

import pytest


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep the developer's shell configuration out of every test."""
    for name in list(os.environ):
        if name.startswith("COINFRONT_") or name in ("COINGECKO_API_KEY", "LOG_LEVEL"):
            monkeypatch.delenv(name, raising=False)
