"""Typed subprocess driver for docker-compatible container runtimes."""

__version__ = "0.1.0"
