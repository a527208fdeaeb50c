"""Fault taxonomy shared by the store, the adapters and the pipeline.

Every fault carries a short human-readable message that the API layer
returns as-is. Library exceptions are chained with ``raise ... from``.
"""


class MinutesError(Exception):
    """Base class for all domain faults."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationFault(MinutesError):
    """Bad or missing input, raised before any storage or network call."""

    status_code = 400

    def __init__(self, message: str, errors: list[dict] | None = None):
        super().__init__(message)
        self.errors = errors or []


class NotFound(MinutesError):
    status_code = 404


class StorageFault(MinutesError):
    """The embedded database rejected the operation."""


class TranscriptionFault(MinutesError):
    status_code = 502


class AnalysisFault(MinutesError):
    """One analysis stage failed. Tolerated by the pipeline."""

    status_code = 502

    def __init__(self, stage: str, message: str):
        super().__init__(message)
        self.stage = stage


class AuthFault(MinutesError):
    """Mail transport rejected the credentials."""

    status_code = 401


class SendFault(MinutesError):
    """Credentials were accepted but delivery failed."""

    status_code = 502


class NetworkFault(MinutesError):
    """A remote service could not be reached."""

    status_code = 502
