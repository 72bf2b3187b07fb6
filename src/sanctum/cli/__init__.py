"""Sanctum command-line interface."""
