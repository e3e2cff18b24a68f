"""
Correction request builder.

Projects the correction tool's working state (the shared header of the
transaction being corrected plus the proposed replacement rows) into a
CorrectionRequest.  Only whitelisted fields survive the projection; every
other attribute of the UI objects is dropped.

The builder is pure: it never raises on missing header fields (they become
None and the server rejects them with VALIDATION_HEADER_INCOMPLETE) and it
does no I/O beyond calling the injected translator.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from voucher_kernel.domain.dtos import (
    CorrectionDetails,
    CorrectionRequest,
    TransactionHeader,
    TransactionRow,
)
from voucher_tools.translate import (
    CORRECT_DESCRIPTION_KEY,
    REVERSE_DESCRIPTION_KEY,
    Translator,
)


def describe(translate: Translator, key: str, trans_id: Any) -> str:
    """``"<translated text> <trans_id>"``."""
    return f"{translate(key)} {trans_id}"


def build_correction_request(
    shared: Any,
    rows: Iterable[Any],
    translate: Translator,
) -> CorrectionRequest:
    """
    Build the payload that reverses ``shared`` and posts ``rows`` instead.

    Args:
        shared: Mapping or object carrying the posted transaction's header
            (record_uuid, user_id, project_id, currency_id, trans_id).
        rows: Mappings or objects, one per proposed line.
        translate: Catalog lookup for the two description templates.

    Raises:
        ValueError: If a row amount is not numeric.
    """
    header = TransactionHeader.project(shared)
    details = CorrectionDetails(
        **{name: getattr(header, name) for name in TransactionHeader.FIELDS},
        description=describe(translate, REVERSE_DESCRIPTION_KEY, header.trans_id),
        correction_description=describe(
            translate, CORRECT_DESCRIPTION_KEY, header.trans_id
        ),
    )
    return CorrectionRequest(
        transaction_details=details,
        correction=tuple(TransactionRow.project(row) for row in rows),
    )
