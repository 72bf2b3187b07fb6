"""Sanctum: local-first document question answering."""

__version__ = "0.1.0"
