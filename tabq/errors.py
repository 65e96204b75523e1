"""
Error taxonomy for the tab engine.

Stage-local failures inside the classification pipeline are caught and turned
into "fall through to the next stage"; only PipelineExhausted and
ValidationError reach callers of classify.
"""

from __future__ import annotations


class TabqError(Exception):
    """Base exception for engine errors."""

    pass


class ValidationError(TabqError, ValueError):
    """Malformed input to dedupe/classify. Caller bug, never retried."""

    pass


class ProviderUnavailable(TabqError):
    """Remote provider has no credentials/config, or its circuit is open."""

    pass


class ProviderRequestFailed(TabqError):
    """Network or HTTP failure talking to the remote provider."""

    pass


class ProviderReplyUnparseable(TabqError):
    """Provider reply did not contain a usable category object."""

    def __init__(self, message: str, raw_text: str = "") -> None:
        super().__init__(message)
        self.raw_text = raw_text


class PersistenceError(TabqError):
    """Storage read/write failure."""

    pass


class PipelineExhausted(TabqError):
    """All stages ran and some units are still without a category."""

    def __init__(self, unresolved_ids: list[str]) -> None:
        super().__init__(f"{len(unresolved_ids)} units left unresolved after all stages")
        self.unresolved_ids = unresolved_ids
