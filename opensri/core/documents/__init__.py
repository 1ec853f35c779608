"""Fiscal document creation and lifecycle rules."""

from .factory import DocumentFactory
from .schemas import TAX_CODE_RATES, DocumentPayload
from .state import TERMINAL_STATUSES, can_transition, is_terminal

__all__ = [
    "DocumentFactory",
    "DocumentPayload",
    "TAX_CODE_RATES",
    "TERMINAL_STATUSES",
    "can_transition",
    "is_terminal",
]
