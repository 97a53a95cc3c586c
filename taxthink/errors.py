"""
errors.py — domain exceptions raised below the HTTP layer.

Routes never catch these; main.py registers one handler per type and turns
them into the standard {error: {code, message, details}} body.
"""


class TaxThinkError(Exception):
    """Base class for all TaxThink domain errors."""


class GenerationFailure(TaxThinkError):
    """The text-generation call errored, timed out, or returned unusable output."""


class StoreUnavailable(TaxThinkError):
    """The durable record store could not complete an operation."""
