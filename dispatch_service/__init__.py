"""Dispatcher-side order lifecycle and dispatch coordination engine."""

__version__ = "0.1.0"
