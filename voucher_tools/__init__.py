"""
Voucher tools -- the client side of voucher corrections.

Builds correction requests from the tool's working state, submits them and
tracks the submission in a tagged state (Input, Pending, Done, Errored).
"""

from voucher_tools.client import CorrectionFailure, LocalVoucherToolsService
from voucher_tools.correct import build_correction_request
from voucher_tools.state import (
    CorrectionController,
    CorrectionInput,
    Done,
    Errored,
    Input,
    Pending,
)
from voucher_tools.translate import CatalogTranslator

__all__ = [
    "CorrectionFailure",
    "LocalVoucherToolsService",
    "build_correction_request",
    "CorrectionController",
    "CorrectionInput",
    "Done",
    "Errored",
    "Input",
    "Pending",
    "CatalogTranslator",
]
