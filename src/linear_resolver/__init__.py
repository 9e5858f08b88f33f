"""Alias, cache and dependency resolution for the Linear API."""

__version__ = "0.1.0"
