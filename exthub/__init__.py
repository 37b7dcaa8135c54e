"""exthub — local extension registry and GitHub marketplace client."""

__version__ = "0.1.0"
