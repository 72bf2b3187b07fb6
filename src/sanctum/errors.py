"""Error taxonomy shared by every Sanctum component.

Each error carries a short ``category`` and an actionable ``suggestion`` so the
CLI (and any other front end) can show the user what happened and what to do
next without exposing stack traces. Component-internal exceptions are
translated into one of these kinds before they reach the orchestrator.

RetrievalEmpty, GenerationCancelled and GenerationEmpty are *outcomes*, not
errors; see ``Outcome``.
"""

from __future__ import annotations

from enum import Enum


class SanctumError(Exception):
    """Base class for user-facing Sanctum errors."""

    category: str = "unexpected error"
    suggestion: str = "Check the log file for details."

    def __init__(self, message: str = "", *, suggestion: str | None = None) -> None:
        super().__init__(message or self.category)
        if suggestion is not None:
            self.suggestion = suggestion

    def user_message(self) -> str:
        """One-line summary: ``category: suggestion``."""
        return f"{self.category}: {self.suggestion}"


class HardwareDetectionDegraded(UserWarning):
    """Hardware probing partially failed; conservative defaults were used."""


class ModelNotFound(SanctumError):
    category = "model not loaded"
    suggestion = "Download a model with:  sanctum models download"


class ModelDownloadFailed(SanctumError):
    category = "model download failed"

    def __init__(
        self,
        message: str = "",
        *,
        retryable: bool = False,
        suggestion: str | None = None,
    ) -> None:
        if suggestion is None:
            suggestion = (
                "Check your connection and run the download again; it resumes where it stopped."
                if retryable
                else "Free up disk space or re-run the download from scratch."
            )
        super().__init__(message, suggestion=suggestion)
        self.retryable = retryable


class VaultError(SanctumError):
    category = "vault error"
    suggestion = "Run:  sanctum vault status"


class VaultLocked(VaultError):
    category = "vault locked"
    suggestion = "Unlock with your password (or biometrics) and try again."


class AuthenticationFailed(VaultError):
    category = "authentication failed"
    suggestion = "Check your password and try again."


class IngestionFailed(SanctumError):
    category = "ingestion failed"
    suggestion = "Nothing was saved. Retry with the same file or choose a different one."


class UnsupportedFileType(IngestionFailed):
    category = "unsupported file type"
    suggestion = "Supported types: pdf, docx, txt, md, png, jpg."


class RetrievalFailed(SanctumError):
    category = "retrieval failed"
    suggestion = "Check that the embedding model is available, then ask again."


class GenerationFailed(SanctumError):
    category = "generation failed"
    suggestion = "Check that the model file is intact, or pick a smaller model."


# ---------------------------------------------------------------------------
# Non-error outcomes
# ---------------------------------------------------------------------------


class Outcome(str, Enum):
    """Terminal outcome of a generation session."""

    COMPLETED = "completed"
    EMPTY = "empty"
    CANCELLED = "cancelled"
    FAILED = "failed"


GUIDANCE: dict[Outcome, str] = {
    Outcome.EMPTY: (
        "The model returned an empty answer. Try rephrasing the question "
        "or asking about a specific document."
    ),
    Outcome.CANCELLED: "Generation stopped. The partial answer was kept.",
}

RETRIEVAL_EMPTY_NOTE = "No documents yet, answering from the model's own knowledge."
