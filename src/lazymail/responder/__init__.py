"""Reply generation, confirmation and read tracking."""

from .auto_responder import AutoResponder, render_template
from .read_tracker import ReadTracker

__all__ = ["AutoResponder", "ReadTracker", "render_template"]
