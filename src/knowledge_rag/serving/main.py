"""ASGI entrypoint: configures logging and wires the app from settings."""

from __future__ import annotations

from knowledge_rag.config import get_settings
from knowledge_rag.log_config import configure_logging
from knowledge_rag.serving.app import create_app

configure_logging(get_settings().log_level)
app = create_app()
