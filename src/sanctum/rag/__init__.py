"""Retrieval-augmented generation: prompts, engines, sessions, orchestration."""
