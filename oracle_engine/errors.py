from __future__ import annotations


class OracleError(RuntimeError):
    pass


class CollaboratorUnavailable(OracleError):
    """Store or feed is not configured or cannot be reached."""


class GenerationFailure(OracleError):
    """Text generation raised or produced nothing usable."""


class TransientFetchFailure(OracleError):
    """A single token feed poll failed; the previous snapshot stays current."""


class DataIntegrityWarning(OracleError):
    """Persisted state is missing or inconsistent; the tick is skipped."""
