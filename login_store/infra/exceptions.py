"""Login store exceptions.

Maps low-level redis-py errors to domain-level exceptions.

Exception hierarchy:
- LoginStoreError (base)
  - StoreConnectionError (transport failure after retries)
  - CommandError (a single store command failed)
  - PipelineTransportError (a whole pipelined round trip failed)
  - LockError
    - LockUnavailable (quorum not reached within the retry budget)
  - SchedulerFlushError (batch flush failure, reported but never raised)
"""


class LoginStoreError(Exception):
    """Base exception for all login store errors."""

    pass


class StoreConnectionError(LoginStoreError):
    """Raised when Redis cannot be reached once retries are exhausted."""

    pass


class CommandError(LoginStoreError):
    """Raised when an individual Redis command fails (wrong type, bad arguments).

    Attributes:
        operation: Facade operation that issued the command
    """

    def __init__(self, message: str, operation: str):
        super().__init__(message)
        self.operation = operation


class PipelineTransportError(LoginStoreError):
    """Raised when a pipelined round trip fails as a whole."""

    pass


class LockError(LoginStoreError):
    """Base exception for distributed lock errors."""

    pass


class LockUnavailable(LockError):
    """Raised when a lock cannot be acquired or extended.

    Attributes:
        resource: Name of the locked resource
        attempts: Number of attempts made
    """

    def __init__(self, resource: str, attempts: int):
        super().__init__(f"Unable to lock '{resource}' after {attempts} attempt(s)")
        self.resource = resource
        self.attempts = attempts


class SchedulerFlushError(LoginStoreError):
    """Wraps a failure of the batch flush collaborator for error observers."""

    pass
