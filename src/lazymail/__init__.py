"""LazyMail: inbox poller with keyword filtering and confirmed automatic replies."""

__version__ = "0.1.0"

__all__ = ["__version__"]
