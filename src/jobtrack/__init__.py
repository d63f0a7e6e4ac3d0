"""jobtrack: job application tracking with Google Calendar synchronization."""

__version__ = "0.1.0"
