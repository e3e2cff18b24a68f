"""
Submission state for the correction tool.

The tool is always in exactly one of four states:

    Input          editing, nothing submitted yet
    Pending        a submission is in flight
    Done(result)   the server accepted the correction
    Errored(code)  the submission was refused; ``code`` is shown verbatim

Transitions:
    Input   -> Pending
    Pending -> Done | Errored
    Done    -> Pending      (a new submission)
    Errored -> Pending      (resubmit after editing)

There is no automatic retry.  Editing the input never changes the state,
so a refused submission keeps both its code and the user's rows.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from voucher_kernel.domain.dtos import CorrectionResult
from voucher_kernel.exceptions import InvalidCorrectionRequestError
from voucher_kernel.logging_config import get_logger
from voucher_tools.client import CorrectionFailure, VoucherToolsService
from voucher_tools.correct import build_correction_request
from voucher_tools.translate import Translator

logger = get_logger("tools.correct")

UNEXPECTED_ERROR = "UNEXPECTED_ERROR"


@dataclass(frozen=True)
class Input:
    pass


@dataclass(frozen=True)
class Pending:
    pass


@dataclass(frozen=True)
class Done:
    result: CorrectionResult


@dataclass(frozen=True)
class Errored:
    code: str


State = Input | Pending | Done | Errored

VALID_TRANSITIONS: dict[type, frozenset[type]] = {
    Input: frozenset({Pending}),
    Pending: frozenset({Done, Errored}),
    Done: frozenset({Pending}),
    Errored: frozenset({Pending}),
}


@dataclass(frozen=True)
class CorrectionInput:
    """The working copy the tool edits: header of the original plus rows."""

    shared: Any
    rows: tuple[Any, ...] = ()

    @classmethod
    def of(cls, source: Any) -> CorrectionInput:
        """Accept a CorrectionInput, a mapping or an object with shared/rows."""
        if isinstance(source, CorrectionInput):
            return source
        if isinstance(source, Mapping):
            return cls(source.get("shared"), tuple(source.get("rows") or ()))
        return cls(getattr(source, "shared", None), tuple(getattr(source, "rows", ()) or ()))


class CorrectionController:
    """
    Drives one correction from editing to a terminal state.

    Contract:
        ``submit`` always rebuilds the request from the current input, so
        edits made after a refusal are what gets resubmitted.
    """

    def __init__(
        self,
        service: VoucherToolsService,
        translate: Translator,
        source: Any = None,
    ):
        self._service = service
        self._translate = translate
        self._state: State = Input()
        self._input: CorrectionInput | None = None
        if source is not None:
            self.on_changes(source)

    @property
    def state(self) -> State:
        return self._state

    @property
    def input(self) -> CorrectionInput | None:
        return self._input

    @property
    def flag(self) -> str | None:
        """The error code of the last refusal, if the tool is Errored."""
        if isinstance(self._state, Errored):
            return self._state.code
        return None

    @property
    def can_submit(self) -> bool:
        return self._input is not None and not isinstance(self._state, Pending)

    def on_changes(self, source: Any) -> None:
        """Replace the working input; the lifecycle state is untouched."""
        if source is None:
            return
        self._input = CorrectionInput.of(source)

    def submit(self) -> State:
        """
        Submit the current input and wait for the outcome.

        Raises:
            ValueError: If called while a submission is pending or before
                any input was provided.  A row amount the builder cannot
                read is not raised; it moves to
                Errored(VALIDATION_INVALID_REQUEST) without calling the
                service.
            Exception: Anything unexpected from the service, after moving
                to Errored(UNEXPECTED_ERROR).
        """
        if self._input is None:
            raise ValueError("nothing to submit")

        self._transition(Pending())
        try:
            request = build_correction_request(
                self._input.shared, self._input.rows, self._translate
            )
        except ValueError as exc:
            self._transition(Errored(InvalidCorrectionRequestError.code))
            logger.info(
                "correction_submission_invalid",
                extra={"code": InvalidCorrectionRequestError.code, "reason": str(exc)},
            )
            return self._state
        record_uuid = request.record_uuid

        try:
            result = self._service.correct_transaction(record_uuid, request)
        except CorrectionFailure as failure:
            self._transition(Errored(failure.code))
            logger.info(
                "correction_submission_refused",
                extra={"record_uuid": str(record_uuid), "code": failure.code},
            )
            return self._state
        except Exception:
            self._transition(Errored(UNEXPECTED_ERROR))
            logger.error(
                "correction_submission_failed",
                extra={"record_uuid": str(record_uuid)},
                exc_info=True,
            )
            raise

        self._transition(Done(result))
        logger.info(
            "correction_submission_done",
            extra={
                "record_uuid": str(record_uuid),
                "correction_trans_id": result.correction_trans_id,
            },
        )
        return self._state

    def _transition(self, new_state: State) -> None:
        allowed = VALID_TRANSITIONS[type(self._state)]
        if type(new_state) not in allowed:
            raise ValueError(
                f"invalid transition {type(self._state).__name__} -> "
                f"{type(new_state).__name__}"
            )
        self._state = new_state
