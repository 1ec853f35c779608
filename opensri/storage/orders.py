"""Read access to orders produced by checkout."""

from sqlalchemy.orm import Session, selectinload, sessionmaker

from opensri.exceptions import RecordNotFoundError
from opensri.storage.database.models import Order
from opensri.storage.session import transaction


class OrderRepository:
    """Loads orders with their items in a short-lived session."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def find(self, order_id: int) -> Order | None:
        with transaction(self._session_factory) as db:
            return (
                db.query(Order)
                .options(selectinload(Order.items))
                .filter(Order.id == order_id)
                .one_or_none()
            )

    def get(self, order_id: int) -> Order:
        order = self.find(order_id)
        if order is None:
            raise RecordNotFoundError(
                f"Order {order_id} not found", entity_type="order", entity_id=order_id
            )
        return order
