"""
Typed exception hierarchy for the voucher kernel.

Every error carries two class attributes:

    code         machine-readable identifier the client displays verbatim
    status_code  HTTP-style status class (4xx validation/conflict, 5xx storage)

Context is stored as instance attributes so that it survives logging
(StructuredFormatter flattens them into ``exc_<name>`` fields) and
serialisation through ``to_dict()``.

Categories:
    CorrectionError  -> correction request validation, lookup and conflicts
    CashboxError     -> cashbox persistence collaborator
    ImmutabilityViolationError -> attempted mutation of posted rows
"""


class VoucherKernelError(Exception):
    """
    Base exception for all voucher kernel errors.

    All subclasses must define a ``code`` class attribute.
    """

    code: str = "VOUCHER_KERNEL_ERROR"
    status_code: int = 500

    def to_dict(self) -> dict:
        """Structured error body returned to clients."""
        return {
            "code": self.code,
            "status": self.status_code,
            "message": str(self),
        }


# Correction-related exceptions


class CorrectionError(VoucherKernelError):
    """Base exception for correction errors."""

    code: str = "CORRECTION_ERROR"


class CorrectionValidationError(CorrectionError):
    """Base exception for request validation failures (nothing persisted)."""

    code: str = "VALIDATION_ERROR"
    status_code: int = 400


class HeaderIncompleteError(CorrectionValidationError):
    """One or more required transaction header fields are missing."""

    code: str = "VALIDATION_HEADER_INCOMPLETE"

    def __init__(self, missing_fields: list[str]):
        self.missing_fields = missing_fields
        super().__init__(
            f"Transaction header is missing required fields: {', '.join(missing_fields)}"
        )


class EmptyCorrectionError(CorrectionValidationError):
    """The correction carries no replacement rows."""

    code: str = "VALIDATION_EMPTY_ROWS"

    def __init__(self, record_uuid: str):
        self.record_uuid = record_uuid
        super().__init__(f"No correction rows supplied for transaction {record_uuid}")


class UnbalancedCorrectionError(CorrectionValidationError):
    """Correction debits do not equal credits at currency precision."""

    code: str = "VALIDATION_UNBALANCED"

    def __init__(self, debits: str, credits: str, currency_id: int):
        self.debits = debits
        self.credits = credits
        self.currency_id = currency_id
        super().__init__(
            f"Unbalanced correction in currency {currency_id}: "
            f"debits={debits}, credits={credits}"
        )


class InvalidAccountError(CorrectionValidationError):
    """A row references an account that does not exist or cannot be posted to."""

    code: str = "VALIDATION_INVALID_ACCOUNT"

    def __init__(self, account_id: int, reason: str):
        self.account_id = account_id
        self.reason = reason
        super().__init__(f"Invalid account {account_id}: {reason}")


class InvalidCorrectionRequestError(CorrectionValidationError):
    """The request payload is malformed (bad identifiers, amounts or rows)."""

    code: str = "VALIDATION_INVALID_REQUEST"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid correction request: {reason}")


class TransactionNotFoundError(CorrectionError):
    """The original transaction does not exist."""

    code: str = "NOT_FOUND"
    status_code: int = 404

    def __init__(self, record_uuid: str):
        self.record_uuid = record_uuid
        super().__init__(f"Could not find a transaction with uuid {record_uuid}")


class AlreadyCorrectedError(CorrectionError):
    """A reversal/correction pair already exists for the original."""

    code: str = "CONFLICT_ALREADY_CORRECTED"
    status_code: int = 409

    def __init__(self, record_uuid: str):
        self.record_uuid = record_uuid
        super().__init__(f"Transaction {record_uuid} has already been corrected")


class PersistenceFailureError(CorrectionError):
    """The unit of work could not be committed; nothing was persisted."""

    code: str = "PERSISTENCE_FAILURE"
    status_code: int = 500

    def __init__(self, record_uuid: str, reason: str):
        self.record_uuid = record_uuid
        self.reason = reason
        super().__init__(
            f"Could not persist correction of transaction {record_uuid}: {reason}"
        )


# Cashbox-related exceptions


class CashboxError(VoucherKernelError):
    """Base exception for cashbox errors."""

    code: str = "CASHBOX_ERROR"


class CashboxNotFoundError(CashboxError):
    """Cashbox with given id was not found."""

    code: str = "NOT_FOUND"
    status_code: int = 404

    def __init__(self, cashbox_id: int):
        self.cashbox_id = cashbox_id
        super().__init__(f"Could not find a cashbox with id {cashbox_id}.")


class CashboxCurrencyNotFoundError(CashboxError):
    """The cashbox holds no accounts for that currency."""

    code: str = "NOT_FOUND"
    status_code: int = 404

    def __init__(self, cashbox_id: int, currency_id: int):
        self.cashbox_id = cashbox_id
        self.currency_id = currency_id
        super().__init__(
            f"Could not find currency {currency_id} in cashbox {cashbox_id}."
        )


class InvalidCashboxError(CashboxError):
    """Cashbox data contains unknown or missing columns."""

    code: str = "VALIDATION_INVALID_CASHBOX"
    status_code: int = 400

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid cashbox data: {reason}")


# Immutability


class ImmutabilityViolationError(VoucherKernelError):
    """Attempted to modify or delete a posted transaction or its lines."""

    code: str = "IMMUTABILITY_VIOLATION"
    status_code: int = 500

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"{entity_type} {entity_id} is posted and cannot be modified"
        )
