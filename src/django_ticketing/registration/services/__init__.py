"""Stateless services implementing the order and payment lifecycle."""
