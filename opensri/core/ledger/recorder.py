"""Double-entry accounting for completed sales.

Each completed order produces one balanced ``SALE-<order_number>``
transaction:

    Dr 1101 Cash and equivalents      total
        Cr 4101 Sales revenue             subtotal_products
        Cr 4201 Shipping revenue          shipping_cost (when positive)
        Cr 2301 VAT payable               tax_amount

Figures come from the order as resolved by checkout; nothing is recomputed.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload, sessionmaker

from opensri.exceptions import DatabaseIntegrityError, LedgerImbalanceError, ValidationError
from opensri.storage.database.models import LedgerAccount, LedgerEntry, LedgerTransaction
from opensri.storage.orders import OrderRepository
from opensri.storage.session import transaction
from opensri.utils.logging import get_logger
from opensri.utils.money import to_money

logger = get_logger(__name__)

CASH = "1101"
ACCOUNTS_RECEIVABLE = "1201"
VAT_PAYABLE = "2301"
SALES_REVENUE = "4101"
SHIPPING_REVENUE = "4201"

STANDARD_ACCOUNTS: dict[str, tuple[str, str]] = {
    CASH: ("Cash and equivalents", "ASSET"),
    ACCOUNTS_RECEIVABLE: ("Accounts receivable", "ASSET"),
    VAT_PAYABLE: ("VAT payable", "LIABILITY"),
    SALES_REVENUE: ("Sales revenue", "INCOME"),
    SHIPPING_REVENUE: ("Shipping revenue", "INCOME"),
}


@dataclass(frozen=True)
class EntrySpec:
    """One line to post: either a debit or a credit on ``account_code``."""

    account_code: str
    debit: Decimal = Decimal("0.00")
    credit: Decimal = Decimal("0.00")
    note: str | None = None


def sale_reference(order_number: str) -> str:
    return f"SALE-{order_number}"


class LedgerRecorder:
    """Posts balanced transactions; a duplicate reference is a no-op."""

    def __init__(self, session_factory: sessionmaker[Session], orders: OrderRepository):
        self._session_factory = session_factory
        self.orders = orders

    def record(self, order_id: int) -> LedgerTransaction:
        """Post the sale transaction for a completed order.

        Returns:
            The new transaction, or the existing one when already recorded

        Raises:
            RecordNotFoundError: If the order does not exist
            ValidationError: If the order is not paid
            LedgerImbalanceError: If the order figures do not balance
        """
        order = self.orders.get(order_id)
        if order.payment_status != "completed":
            raise ValidationError(
                f"Order {order.order_number} is not paid",
                field="payment_status",
                value=order.payment_status,
            )

        reference = sale_reference(order.order_number)
        existing = self.get_transaction(reference)
        if existing is not None:
            logger.info("ledger_sale_already_recorded", order_id=order_id, reference=reference)
            return existing

        shipping = to_money(order.shipping_cost)
        tax = to_money(order.tax_amount)
        entries = [
            EntrySpec(CASH, debit=to_money(order.total), note="Payment received"),
            EntrySpec(
                SALES_REVENUE, credit=to_money(order.subtotal_products), note="Product sales"
            ),
        ]
        if shipping > 0:
            entries.append(EntrySpec(SHIPPING_REVENUE, credit=shipping, note="Shipping"))
        if tax > 0:
            entries.append(EntrySpec(VAT_PAYABLE, credit=tax, note="IVA"))

        return self.post(
            reference,
            entries,
            description=f"Sale order {order.order_number}",
            order_id=order.id,
            user_id=order.user_id,
        )

    def post(
        self,
        reference_number: str,
        entries: Sequence[EntrySpec],
        description: str,
        transaction_type: str = "SALE",
        order_id: int | None = None,
        user_id: int | None = None,
        transaction_date: date | None = None,
    ) -> LedgerTransaction:
        """Persist a transaction after checking that it balances.

        Raises:
            LedgerImbalanceError: If debits and credits differ; nothing is written
            DatabaseIntegrityError: If the insert fails for a reason other than
                a concurrent post of the same reference
        """
        total_debit = sum((to_money(e.debit) for e in entries), Decimal("0.00"))
        total_credit = sum((to_money(e.credit) for e in entries), Decimal("0.00"))
        if not entries or total_debit != total_credit:
            logger.critical(
                "ledger_imbalance",
                reference=reference_number,
                total_debit=str(total_debit),
                total_credit=str(total_credit),
                order_id=order_id,
            )
            raise LedgerImbalanceError(
                "Ledger transaction does not balance",
                reference_number=reference_number,
                total_debit=total_debit,
                total_credit=total_credit,
            )

        self._ensure_accounts({e.account_code for e in entries})

        try:
            with transaction(self._session_factory) as db:
                accounts = {
                    account.code: account
                    for account in db.query(LedgerAccount)
                    .filter(LedgerAccount.code.in_([e.account_code for e in entries]))
                    .all()
                }
                ledger_transaction = LedgerTransaction(
                    reference_number=reference_number,
                    transaction_date=transaction_date or date.today(),
                    description=description,
                    transaction_type=transaction_type,
                    order_id=order_id,
                    user_id=user_id,
                    is_posted=True,
                    entries=[
                        LedgerEntry(
                            account=accounts[spec.account_code],
                            position=position,
                            debit=to_money(spec.debit),
                            credit=to_money(spec.credit),
                            note=spec.note,
                        )
                        for position, spec in enumerate(entries, start=1)
                    ],
                )
                db.add(ledger_transaction)
                db.flush()
        except IntegrityError as e:
            existing = self.get_transaction(reference_number)
            if existing is not None:
                logger.info("ledger_post_race_resolved", reference=reference_number)
                return existing
            raise DatabaseIntegrityError(
                "Could not persist ledger transaction",
                context={"reference_number": reference_number},
                original_error=e,
            ) from e

        logger.info(
            "ledger_transaction_posted",
            reference=reference_number,
            transaction_id=ledger_transaction.id,
            amount=str(total_debit),
            entries=len(entries),
        )
        return ledger_transaction

    def get_transaction(self, reference_number: str) -> LedgerTransaction | None:
        with transaction(self._session_factory) as db:
            return (
                db.query(LedgerTransaction)
                .options(selectinload(LedgerTransaction.entries))
                .filter(LedgerTransaction.reference_number == reference_number)
                .one_or_none()
            )

    def list_transactions(self, limit: int = 50) -> list[LedgerTransaction]:
        with transaction(self._session_factory) as db:
            return (
                db.query(LedgerTransaction)
                .options(selectinload(LedgerTransaction.entries))
                .order_by(LedgerTransaction.id.desc())
                .limit(limit)
                .all()
            )

    def _ensure_accounts(self, codes: set[str]) -> None:
        """Create missing chart-of-accounts rows (get-or-create)."""
        with transaction(self._session_factory) as db:
            existing = {
                code
                for (code,) in db.query(LedgerAccount.code).filter(LedgerAccount.code.in_(codes))
            }
        for code in sorted(codes - existing):
            name, account_type = STANDARD_ACCOUNTS.get(code, (f"Account {code}", "OTHER"))
            try:
                with transaction(self._session_factory) as db:
                    db.add(LedgerAccount(code=code, name=name, account_type=account_type))
            except IntegrityError:
                # Created concurrently
                logger.debug("ledger_account_exists", code=code)
