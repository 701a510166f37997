"""
Error taxonomy of the reconciliation pipeline.

- ValidationError   caller mistake (missing session, out-of-order stage, malformed edit)
- ConsistencyError  a consistency rule would be violated (duplicate sheet name, empty commit)
- StaleStateError   concurrent edit conflict; re-fetch the snapshot and retry
- ImportTimeoutError the asynchronous job import did not arrive in time

Extraction warnings and match ambiguity are values, not exceptions; see
``crewperf.ingest.extract.ExtractionWarning`` and ``MatchStatus``.
"""


class ReconciliationError(Exception):
    """Base class for all pipeline errors."""


class ValidationError(ReconciliationError, ValueError):
    pass


class ConsistencyError(ReconciliationError):
    pass


class StaleStateError(ReconciliationError):
    def __init__(self, session_id: str, expected: int, actual: int):
        self.session_id = session_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Session {session_id} changed concurrently "
            f"(expected version {expected}, found {actual}); re-fetch and retry"
        )


class ImportTimeoutError(ReconciliationError, TimeoutError):
    pass
