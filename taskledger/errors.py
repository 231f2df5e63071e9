"""Error taxonomy for the task lifecycle and billing engine.

Every failure an operation can report is an ``EngineError`` subclass with a
stable ``code``. None of them is fatal: callers surface ``message`` to the
user and carry on.
"""


class EngineError(Exception):
    """Base class for recoverable engine failures."""

    code = "engine_error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)
        self.message = message or self.code


class InvalidTransition(EngineError):
    code = "invalid_transition"


class Forbidden(EngineError):
    code = "forbidden"


class InsufficientBalance(EngineError):
    code = "insufficient_balance"


class DuplicateCapture(EngineError):
    code = "duplicate_capture"


class NoCaptureFound(EngineError):
    code = "no_capture_found"


class AlreadyRefunded(EngineError):
    code = "already_refunded"


class EvaluationNotFound(EngineError):
    code = "evaluation_not_found"


class AlreadySuperseded(EngineError):
    code = "already_superseded"


class InvalidAmount(EngineError):
    code = "invalid_amount"


class TaskNotEvaluable(EngineError):
    code = "task_not_evaluable"


class NegativeResult(InvalidAmount):
    """Money subtraction would go below zero."""

    code = "negative_result"


class TaskNotFound(EngineError):
    code = "task_not_found"


class TransactionNotFound(EngineError):
    code = "transaction_not_found"


class NotInvoiceable(EngineError):
    code = "not_invoiceable"


class InvoiceNotFound(EngineError):
    code = "invoice_not_found"


class ConfigError(EngineError):
    code = "config_error"


class StorageError(EngineError):
    code = "storage_error"
