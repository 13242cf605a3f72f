"""
Ledger Models - Immutable stock movement records.

Every change to Inventory.current_stock is paired with exactly one
StockTransaction written in the same database transaction.

Movement kinds:
    - IN: stock received (balance + quantity)
    - OUT: stock consumed or shipped (balance - quantity)
    - ADJUSTMENT: absolute correction (balance set to a target; quantity
      stores the magnitude of the resulting delta)
"""
from django.core.validators import MinValueValidator
from django.db import models
from django.utils import timezone

from inventory.models import Product


class ImmutableLedgerError(Exception):
    """Raised on any attempt to edit or delete ledger history."""
    pass


class StockTransactionQuerySet(models.QuerySet):
    """Read-only queryset: bulk edits would bypass the model guards."""

    def update(self, **kwargs):
        raise ImmutableLedgerError("Stock transactions cannot be updated")

    def delete(self):
        raise ImmutableLedgerError("Stock transactions cannot be deleted")


class StockTransaction(models.Model):
    """
    One audit record of a stock movement.

    quantity is an unsigned magnitude; the sign is implied by
    transaction_type. previous_stock/new_stock capture the balance around
    the movement so history can be replayed and audited.
    """

    class Kind(models.TextChoices):
        IN = 'IN', 'Stock In'
        OUT = 'OUT', 'Stock Out'
        ADJUSTMENT = 'ADJUSTMENT', 'Adjustment'

    product = models.ForeignKey(
        Product,
        on_delete=models.PROTECT,
        related_name='transactions',
        help_text="Product whose balance moved"
    )
    transaction_type = models.CharField(
        max_length=20,
        choices=Kind.choices,
        db_index=True,
        help_text="Movement kind"
    )
    quantity = models.PositiveIntegerField(
        validators=[MinValueValidator(1)],
        help_text="Magnitude of the balance change"
    )
    previous_stock = models.PositiveIntegerField(
        help_text="Balance before the movement"
    )
    new_stock = models.PositiveIntegerField(
        help_text="Balance after the movement"
    )
    reference_number = models.CharField(
        max_length=100,
        blank=True,
        default='',
        db_index=True,
        help_text="Optional external reference (PO, invoice, ...)"
    )
    notes = models.TextField(blank=True, default='')
    transaction_date = models.DateTimeField(default=timezone.now, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)

    objects = StockTransactionQuerySet.as_manager()

    class Meta:
        verbose_name = 'Stock Transaction'
        verbose_name_plural = 'Stock Transactions'
        ordering = ['-transaction_date', '-id']
        constraints = [
            models.CheckConstraint(
                condition=models.Q(quantity__gte=1),
                name='stock_transaction_quantity_positive',
            ),
        ]
        indexes = [
            models.Index(fields=['product', 'transaction_date']),
            models.Index(fields=['transaction_type', 'transaction_date']),
        ]

    def __str__(self):
        return f"{self.transaction_type} {self.quantity}x {self.product_id} @ {self.transaction_date:%Y-%m-%d %H:%M}"

    def save(self, *args, **kwargs):
        if self.pk is not None:
            raise ImmutableLedgerError("Stock transactions cannot be modified once written")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ImmutableLedgerError("Stock transactions cannot be deleted")

    @property
    def signed_quantity(self) -> int:
        """Balance delta this entry represents."""
        return self.new_stock - self.previous_stock
