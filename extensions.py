"""
Shared extension instances: the rate limiter and the generation client singleton.

Kept out of app.py so blueprints can import them without circular imports.
"""

from __future__ import annotations

from flask import current_app
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, default_limits=["300 per hour"])


class GenerationManager:
    """Lazy-loaded singleton for the LLM generation client."""

    _client = None

    @classmethod
    def get_client(cls):
        if cls._client is None:
            from generation import GenerationClient
            cls._client = GenerationClient.from_config(current_app.config)
        return cls._client

    @classmethod
    def set_client(cls, client) -> None:
        """Install a specific client (used by tests and by scripts)."""
        cls._client = client

    @classmethod
    def reset(cls):
        cls._client = None
