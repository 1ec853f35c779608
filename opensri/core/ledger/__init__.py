"""Accounting ledger."""

from .recorder import STANDARD_ACCOUNTS, EntrySpec, LedgerRecorder, sale_reference

__all__ = ["STANDARD_ACCOUNTS", "EntrySpec", "LedgerRecorder", "sale_reference"]
