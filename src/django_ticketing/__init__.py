"""Event ticketing, registration, and payment reconciliation for Django."""

__version__ = "0.1.0"
