from __future__ import annotations


class ChainWeaveError(Exception):
    """Base class for errors raised by the backend."""


class ConfigError(ChainWeaveError):
    pass


class RequestNotFound(ChainWeaveError):
    def __init__(self, request_id: str):
        super().__init__(f"request {request_id} not found")
        self.request_id = request_id


class InvalidTransition(ChainWeaveError):
    """Raised when a status change is not in the lifecycle transition table."""

    def __init__(self, request_id: str, current: str, target: str):
        super().__init__(f"request {request_id}: illegal transition {current} -> {target}")
        self.request_id = request_id
        self.current = current
        self.target = target


class RetryLimitExceeded(ChainWeaveError):
    pass


class ConcurrentUpdateError(ChainWeaveError):
    pass


class TransactionFailed(ChainWeaveError):
    def __init__(self, tx_hash: str | None, status: int | None):
        super().__init__(f"transaction {tx_hash} failed (status={status})")
        self.tx_hash = tx_hash
        self.status = status


class PipelineError(ChainWeaveError):
    pass


class ValidationFailed(ChainWeaveError):
    pass


__all__ = [
    "ChainWeaveError",
    "ConfigError",
    "RequestNotFound",
    "InvalidTransition",
    "RetryLimitExceeded",
    "ConcurrentUpdateError",
    "TransactionFailed",
    "PipelineError",
    "ValidationFailed",
]
