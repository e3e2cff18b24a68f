"""
Submission adapters for the correction tool.

``VoucherToolsService`` is the call the controller makes.  The in-process
``LocalVoucherToolsService`` sends the request through the same JSON wire
shape an HTTP client would, runs the kernel's CorrectionService, and turns
kernel errors into ``CorrectionFailure`` so that the controller only ever
sees a code.
"""

from __future__ import annotations

import json
from typing import Protocol
from uuid import UUID

from sqlalchemy.orm import Session

from voucher_config.schema import VoucherConfig
from voucher_kernel.domain.dtos import CorrectionRequest, CorrectionResult
from voucher_kernel.exceptions import VoucherKernelError
from voucher_kernel.logging_config import get_logger
from voucher_kernel.services.correction_service import CorrectionService
from voucher_kernel.services.topic import OutboxRelay
from voucher_kernel.services.transaction_writer import TransactionWriter
from voucher_kernel.utils.hashing import canonicalize_json

logger = get_logger("tools.client")


class CorrectionFailure(Exception):
    """A correction the server refused, carrying its error code."""

    def __init__(self, code: str, status_code: int, message: str):
        self.code = code
        self.status_code = status_code
        self.message = message
        super().__init__(f"{code}: {message}")

    @classmethod
    def from_body(cls, body: dict) -> CorrectionFailure:
        """Build from an error body ``{"code", "status", "message"}``."""
        return cls(
            code=body["code"],
            status_code=int(body.get("status", 500)),
            message=body.get("message", ""),
        )


class VoucherToolsService(Protocol):
    def correct_transaction(
        self,
        record_uuid: UUID | str,
        request: CorrectionRequest,
    ) -> CorrectionResult: ...


class LocalVoucherToolsService:
    """
    Runs corrections against an in-process CorrectionService.

    Contract:
        Returns a CorrectionResult or raises CorrectionFailure.  Anything
        that is not a VoucherKernelError propagates unchanged.
    """

    def __init__(self, service: CorrectionService):
        self._service = service

    @classmethod
    def from_config(
        cls,
        session: Session,
        config: VoucherConfig,
        relay: OutboxRelay | None = None,
    ) -> LocalVoucherToolsService:
        """Wire a CorrectionService on ``session`` using the ledger settings."""
        writer = TransactionWriter(
            session,
            default_decimal_places=config.ledger.default_decimal_places,
        )
        return cls(CorrectionService(session, writer=writer, relay=relay))

    def correct_transaction(
        self,
        record_uuid: UUID | str,
        request: CorrectionRequest,
    ) -> CorrectionResult:
        body = json.loads(canonicalize_json(request.to_payload()))
        try:
            parsed = CorrectionRequest.from_payload(body)
            result = self._service.correct_transaction(record_uuid, parsed)
        except VoucherKernelError as exc:
            failure = CorrectionFailure.from_body(exc.to_dict())
            logger.info(
                "correction_request_refused",
                extra={"code": failure.code, "status_code": failure.status_code},
            )
            raise failure from exc

        return CorrectionResult.from_payload(
            json.loads(canonicalize_json(result.to_payload()))
        )
