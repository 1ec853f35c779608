"""Checkout events consumed by the fiscal pipeline."""

from __future__ import annotations

from dataclasses import dataclass

from opensri.core.events.base import BaseEvent


@dataclass(frozen=True)
class OrderCompletedEvent(BaseEvent):
    """Emitted by checkout once an order is paid.

    Entry point of the pipeline: a document is issued and the sale is posted
    to the ledger.
    """

    order_id: int
