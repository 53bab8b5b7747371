"""Build notifiers - deliver build lifecycle events to external channels."""

__version__ = "0.1.0"
