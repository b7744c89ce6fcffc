"""Apply user and user-address change events to local tables and forward log messages to Loki."""

__version__ = "0.1.0"