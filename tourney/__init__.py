"""Tournament check-in, waitlist promotion and wallet reconciliation backend."""

__version__ = "1.0.0"
