"""
Stock Mutator - the only writer of Inventory.current_stock.

Every movement runs as one database transaction:
1. Lock the product's balance row with select_for_update()
2. Compute the new balance for the movement kind
3. Reject it if it would go negative or change nothing (nothing is written)
4. Save the balance and append exactly one ledger entry
5. After commit, hand the change to the notification fan-out

Fan-out happens in transaction.on_commit(robust=True) callbacks, so a
rolled-back movement never notifies anyone and a failing subscriber never
fails the movement.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from django.db import OperationalError, transaction

from core.exceptions import (
    BusinessRuleViolation,
    ContentionError,
    InventoryValidationError,
)
from inventory.models import Inventory
from inventory.services import is_lock_contention, lock_active_balance
from .models import StockTransaction

logger = logging.getLogger(__name__)


@dataclass
class MovementResult:
    inventory: Inventory
    transaction: StockTransaction
    previous_stock: int
    delta: int

    @property
    def new_stock(self) -> int:
        return self.inventory.current_stock


def validate_movement(kind: str, quantity) -> None:
    """
    Raises:
        InventoryValidationError: On an unknown kind or a non-positive quantity
    """
    errors = {}
    if kind not in StockTransaction.Kind.values:
        errors['transaction_type'] = [f"Must be one of {', '.join(StockTransaction.Kind.values)}."]
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        errors['quantity'] = ['Must be an integer greater than or equal to 1.']
    if errors:
        raise InventoryValidationError("Invalid stock movement", errors=errors)


def _compute_new_stock(kind: str, current: int, quantity: int) -> int:
    if kind == StockTransaction.Kind.IN:
        return current + quantity
    if kind == StockTransaction.Kind.OUT:
        if quantity > current:
            raise BusinessRuleViolation(
                f"Insufficient stock: requested {quantity}, available {current}"
            )
        return current - quantity
    # ADJUSTMENT sets the balance to an absolute target
    return quantity


def _append_ledger_entry(inventory: Inventory, kind: str, previous_stock: int,
                         reference_number: Optional[str], notes: Optional[str]) -> StockTransaction:
    return StockTransaction.objects.create(
        product_id=inventory.product_id,
        transaction_type=kind,
        quantity=abs(inventory.current_stock - previous_stock),
        previous_stock=previous_stock,
        new_stock=inventory.current_stock,
        reference_number=(reference_number or '').strip(),
        notes=(notes or '').strip(),
    )


def apply_movement(
    product_id: int,
    kind: str,
    quantity: int,
    reference_number: Optional[str] = None,
    notes: Optional[str] = None,
    location: Optional[str] = None,
) -> MovementResult:
    """
    Apply one stock movement atomically.

    Args:
        product_id: Product whose balance moves
        kind: IN, OUT or ADJUSTMENT
        quantity: Units moved (IN/OUT) or the absolute target (ADJUSTMENT)
        reference_number: Optional external reference stored on the ledger entry
        notes: Optional free text stored on the ledger entry
        location: Optional new storage location for the balance

    Returns:
        MovementResult with the updated balance and the ledger entry

    Raises:
        InventoryValidationError: Bad kind or quantity
        NotFoundError: No balance row, or the product is inactive
        BusinessRuleViolation: The movement would make the balance negative, cut
            into reserved stock, or (ADJUSTMENT) leave the balance unchanged
        ContentionError: The balance row stayed locked too long (retryable)
    """
    validate_movement(kind, quantity)

    try:
        with transaction.atomic():
            inventory = lock_active_balance(product_id)

            previous_stock = inventory.current_stock
            new_stock = _compute_new_stock(kind, previous_stock, quantity)
            if new_stock == previous_stock:
                raise BusinessRuleViolation("Stock is already at the requested level")
            if new_stock < 0:
                raise BusinessRuleViolation("Stock cannot go negative")
            if new_stock < inventory.reserved_stock:
                raise BusinessRuleViolation(
                    f"Movement would leave less stock ({new_stock}) than is reserved "
                    f"({inventory.reserved_stock})"
                )

            inventory.current_stock = new_stock
            update_fields = ['current_stock', 'last_updated']
            if location is not None:
                inventory.location = location.strip()
                update_fields.append('location')
            inventory.save(update_fields=update_fields)

            entry = _append_ledger_entry(inventory, kind, previous_stock, reference_number, notes)

            result = MovementResult(
                inventory=inventory,
                transaction=entry,
                previous_stock=previous_stock,
                delta=new_stock - previous_stock,
            )
            transaction.on_commit(lambda: _after_commit(result), robust=True)
    except BusinessRuleViolation as e:
        logger.warning(f"Rejected {kind} of {quantity} on product {product_id}: {e.message}")
        raise
    except OperationalError as e:
        if not is_lock_contention(e):
            raise
        logger.warning(f"{kind} on product {product_id} hit lock contention: {e}")
        raise ContentionError()

    logger.info(
        f"Applied {kind} {quantity} to product {product_id}: "
        f"{previous_stock} -> {new_stock} (transaction #{entry.id})"
    )
    return result


def _after_commit(result: MovementResult) -> None:
    """Notify live subscribers and queue out-of-band alerts."""
    from notifications import events
    from notifications.tasks import LOW_STOCK, OUT_OF_STOCK, send_stock_alert

    inventory = result.inventory
    entry = result.transaction
    product_id = inventory.product_id
    current = inventory.current_stock
    minimum = inventory.product.minimum_stock

    events.emit_stock_update(
        product_id, current, result.previous_stock, entry.transaction_type, entry.quantity,
    )
    events.emit_transaction_created({
        'id': entry.id,
        'product_id': product_id,
        'transaction_type': entry.transaction_type,
        'quantity': entry.quantity,
        'previous_stock': entry.previous_stock,
        'new_stock': entry.new_stock,
        'reference_number': entry.reference_number,
        'transaction_date': entry.transaction_date,
    })

    alert = None
    if current == 0:
        alert = OUT_OF_STOCK
        events.emit_out_of_stock_alert(product_id)
    elif current <= minimum:
        alert = LOW_STOCK
        events.emit_low_stock_alert(product_id, current, minimum)

    if alert:
        try:
            send_stock_alert.delay(product_id, alert, current, minimum)
            logger.info(f"Queued {alert} notice for product {product_id}")
        except Exception as e:
            logger.error(f"Failed to queue {alert} notice for product {product_id}: {e}")


# =============================================================================
# Convenience wrappers
# =============================================================================

def add_stock(product_id: int, quantity: int, **kwargs) -> MovementResult:
    return apply_movement(product_id, StockTransaction.Kind.IN, quantity, **kwargs)


def remove_stock(product_id: int, quantity: int, **kwargs) -> MovementResult:
    return apply_movement(product_id, StockTransaction.Kind.OUT, quantity, **kwargs)


def adjust_stock(product_id: int, quantity: int, **kwargs) -> MovementResult:
    return apply_movement(product_id, StockTransaction.Kind.ADJUSTMENT, quantity, **kwargs)
