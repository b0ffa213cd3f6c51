"""Web application entry point for LazyMail."""

from .app import create_app

__all__ = ["create_app"]
