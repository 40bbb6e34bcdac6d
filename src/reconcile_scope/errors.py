"""Errors raised by the scope layer.

Store failures are not wrapped here: they surface as the types defined in
``reconcile_scope.store`` so callers can classify them themselves.
"""

from __future__ import annotations


class ScopeError(Exception):
    """Base class for scope errors."""

    pass


class InvalidParamsError(ScopeError):
    """Raised when a scope is constructed without a required input.

    Fatal for the reconciliation pass; retrying without fixing the inputs
    cannot succeed.
    """

    pass


class NoBootstrapDataError(ScopeError):
    """Raised when the machine has no bootstrap data secret yet.

    Expected while the bootstrap provider is still rendering the data.
    Callers should requeue.
    """

    def __init__(self, machine: str) -> None:
        super().__init__(f"machine {machine} has no bootstrap data yet")
        self.machine = machine


class RetryExhaustedError(ScopeError):
    """Raised by finalize when every commit attempt failed.

    The last underlying error is available as ``last_error`` and as the
    exception's ``__cause__``.
    """

    def __init__(self, key: str, attempts: int, last_error: Exception) -> None:
        super().__init__(
            f"failed to patch {key} after {attempts} attempts: {last_error}"
        )
        self.key = key
        self.attempts = attempts
        self.last_error = last_error
