"""Core configuration, clock, errors, permissions and crypto helpers."""

from studio.core.config import Settings, get_settings
from studio.core.database import build_engine, build_session_factory

__all__ = ["Settings", "get_settings", "build_engine", "build_session_factory"]
