"""
DTOs -- Pure domain data transfer objects for voucher corrections.

Responsibility:
    Defines the immutable shapes exchanged between the voucher tools client
    and the correction service: TransactionHeader, TransactionRow,
    CorrectionDetails, CorrectionRequest and CorrectionResult.  Each record
    kind has an explicit projection (``project``) that keeps only its own
    fields from an arbitrary UI object, and a wire codec
    (``to_payload`` / ``from_payload``).

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Shared by the
    client package (voucher_tools) and the services.

Invariants enforced:
    - Projections copy exactly the declared fields; anything else on the
      source object is dropped.
    - from_payload ignores unknown keys (forward compatibility) and raises
      InvalidCorrectionRequestError for values it cannot parse.
    - Amounts are Decimal, never float.

Data flow:
    UI state -> project() -> CorrectionRequest -> to_payload() -> wire
    wire -> CorrectionRequest.from_payload() -> CorrectionService
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, fields
from decimal import Decimal
from typing import Any
from uuid import UUID

from voucher_kernel.db.types import ZERO, to_money
from voucher_kernel.exceptions import InvalidCorrectionRequestError


def _read(source: Any, name: str) -> Any:
    """Read a field from a mapping or an attribute object; None if absent."""
    if isinstance(source, Mapping):
        return source.get(name)
    return getattr(source, name, None)


def _parse_uuid(value: Any, field_name: str) -> UUID | None:
    if value is None or value == "":
        return None
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError as exc:
        raise InvalidCorrectionRequestError(
            f"{field_name} is not a valid uuid: {value!r}"
        ) from exc


def _parse_int(value: Any, field_name: str) -> int | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise InvalidCorrectionRequestError(f"{field_name} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise InvalidCorrectionRequestError(
            f"{field_name} must be an integer, got {value!r}"
        ) from exc


def _parse_amount(value: Any, field_name: str) -> Decimal:
    try:
        return to_money(value)
    except ValueError as exc:
        raise InvalidCorrectionRequestError(f"{field_name}: {exc}") from exc


def _uuid_str(value: Any) -> str | None:
    return None if value is None else str(value)


# =============================================================================
# Transaction header
# =============================================================================


@dataclass(frozen=True)
class TransactionHeader:
    """
    Shared attributes of a posted transaction.

    Contract:
        All five fields must be non-null before a correction can be built;
        construction itself does not require them (the request builder
        never fails on UI state).
    """

    record_uuid: UUID | str | None = None
    user_id: int | None = None
    project_id: int | None = None
    currency_id: int | None = None
    trans_id: int | None = None

    FIELDS = ("record_uuid", "user_id", "project_id", "currency_id", "trans_id")

    @classmethod
    def project(cls, source: Any) -> TransactionHeader:
        """Keep only the header fields of ``source``."""
        return cls(**{name: _read(source, name) for name in cls.FIELDS})

    def missing_fields(self) -> list[str]:
        return [name for name in self.FIELDS if getattr(self, name) is None]

    @property
    def is_complete(self) -> bool:
        return not self.missing_fields()

    def to_payload(self) -> dict[str, Any]:
        return {
            "record_uuid": _uuid_str(self.record_uuid),
            "user_id": self.user_id,
            "project_id": self.project_id,
            "currency_id": self.currency_id,
            "trans_id": self.trans_id,
        }

    @staticmethod
    def _parse_fields(data: Mapping[str, Any]) -> dict[str, Any]:
        return {
            "record_uuid": _parse_uuid(data.get("record_uuid"), "record_uuid"),
            "user_id": _parse_int(data.get("user_id"), "user_id"),
            "project_id": _parse_int(data.get("project_id"), "project_id"),
            "currency_id": _parse_int(data.get("currency_id"), "currency_id"),
            "trans_id": _parse_int(data.get("trans_id"), "trans_id"),
        }

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> TransactionHeader:
        return cls(**cls._parse_fields(data))


@dataclass(frozen=True)
class CorrectionDetails(TransactionHeader):
    """Transaction header plus the reversal and correction descriptions."""

    description: str | None = None
    correction_description: str | None = None

    def header(self) -> TransactionHeader:
        return TransactionHeader(
            **{name: getattr(self, name) for name in TransactionHeader.FIELDS}
        )

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["description"] = self.description
        payload["correctionDescription"] = self.correction_description
        return payload

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> CorrectionDetails:
        return cls(
            **cls._parse_fields(data),
            description=data.get("description"),
            correction_description=data.get("correctionDescription"),
        )


# =============================================================================
# Transaction row
# =============================================================================


@dataclass(frozen=True)
class TransactionRow:
    """
    One proposed or posted ledger line.

    Contract:
        credit and debit are non-negative and exactly one of them is
        non-zero (checked by domain.correction.validate_row_shapes, not at
        construction).
    """

    account_id: int | None = None
    credit: Decimal = ZERO
    debit: Decimal = ZERO
    description: str | None = None
    entity_uuid: UUID | str | None = None
    reference_uuid: UUID | str | None = None

    FIELDS = (
        "account_id",
        "credit",
        "debit",
        "description",
        "entity_uuid",
        "reference_uuid",
    )

    @classmethod
    def project(cls, source: Any) -> TransactionRow:
        """Keep only the row fields of ``source``; amounts become Decimal."""
        return cls(
            account_id=_read(source, "account_id"),
            credit=to_money(_read(source, "credit")),
            debit=to_money(_read(source, "debit")),
            description=_read(source, "description"),
            entity_uuid=_read(source, "entity_uuid"),
            reference_uuid=_read(source, "reference_uuid"),
        )

    @classmethod
    def from_line(cls, line: Any, description: str | None = None) -> TransactionRow:
        """Build a row from a persisted TransactionLine."""
        return cls(
            account_id=line.account_id,
            credit=line.credit,
            debit=line.debit,
            description=line.description if description is None else description,
            entity_uuid=line.entity_uuid,
            reference_uuid=line.reference_uuid,
        )

    def reversed(self, description: str | None = None) -> TransactionRow:
        """The same line with debit and credit swapped."""
        return TransactionRow(
            account_id=self.account_id,
            credit=self.debit,
            debit=self.credit,
            description=self.description if description is None else description,
            entity_uuid=self.entity_uuid,
            reference_uuid=self.reference_uuid,
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "account_id": self.account_id,
            "credit": str(self.credit),
            "debit": str(self.debit),
            "description": self.description,
            "entity_uuid": _uuid_str(self.entity_uuid),
            "reference_uuid": _uuid_str(self.reference_uuid),
        }

    @classmethod
    def from_payload(cls, data: Mapping[str, Any], index: int = 0) -> TransactionRow:
        if not isinstance(data, Mapping):
            raise InvalidCorrectionRequestError(f"row {index} is not an object")
        return cls(
            account_id=_parse_int(data.get("account_id"), f"row {index} account_id"),
            credit=_parse_amount(data.get("credit"), f"row {index} credit"),
            debit=_parse_amount(data.get("debit"), f"row {index} debit"),
            description=data.get("description"),
            entity_uuid=_parse_uuid(data.get("entity_uuid"), f"row {index} entity_uuid"),
            reference_uuid=_parse_uuid(
                data.get("reference_uuid"), f"row {index} reference_uuid"
            ),
        )


# =============================================================================
# Request / result
# =============================================================================


@dataclass(frozen=True)
class CorrectionRequest:
    """
    The payload submitted to correct a posted transaction.

    Constructed fresh per attempt from UI state, never persisted client-side.
    """

    transaction_details: CorrectionDetails
    correction: tuple[TransactionRow, ...] = ()

    @property
    def record_uuid(self) -> UUID | str | None:
        return self.transaction_details.record_uuid

    def to_payload(self) -> dict[str, Any]:
        return {
            "transactionDetails": self.transaction_details.to_payload(),
            "correction": [row.to_payload() for row in self.correction],
        }

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> CorrectionRequest:
        if not isinstance(data, Mapping):
            raise InvalidCorrectionRequestError("request body must be an object")
        details = data.get("transactionDetails")
        if not isinstance(details, Mapping):
            raise InvalidCorrectionRequestError("transactionDetails is required")
        rows = data.get("correction") or []
        if not isinstance(rows, (list, tuple)):
            raise InvalidCorrectionRequestError("correction must be a list of rows")
        return cls(
            transaction_details=CorrectionDetails.from_payload(details),
            correction=tuple(
                TransactionRow.from_payload(row, index) for index, row in enumerate(rows)
            ),
        )


@dataclass(frozen=True)
class CorrectionResult:
    """Identifiers of the reversal and correction created for an original."""

    original_record_uuid: UUID
    reversal_record_uuid: UUID
    reversal_trans_id: int
    correction_record_uuid: UUID
    correction_trans_id: int

    def to_payload(self) -> dict[str, Any]:
        return {
            "original_record_uuid": str(self.original_record_uuid),
            "reversal_record_uuid": str(self.reversal_record_uuid),
            "reversal_trans_id": self.reversal_trans_id,
            "correction_record_uuid": str(self.correction_record_uuid),
            "correction_trans_id": self.correction_trans_id,
        }

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> CorrectionResult:
        values = {f.name: data[f.name] for f in fields(cls)}
        return cls(
            original_record_uuid=UUID(values["original_record_uuid"]),
            reversal_record_uuid=UUID(values["reversal_record_uuid"]),
            reversal_trans_id=int(values["reversal_trans_id"]),
            correction_record_uuid=UUID(values["correction_record_uuid"]),
            correction_trans_id=int(values["correction_trans_id"]),
        )
