"""
Inventory Models - Catalog and balance entities.

Models:
    - Category: Product categorization (soft-deleted)
    - Product: Catalog item with stock thresholds (soft-deleted)
    - Inventory: Current and reserved stock for one product (1:1)
"""
from decimal import Decimal

from django.core.exceptions import ValidationError
from django.core.validators import MinLengthValidator, MinValueValidator
from django.db import models
from django.db.models import F, Q


class Category(models.Model):
    """
    Product category for organizing products.
    """
    name = models.CharField(
        max_length=100,
        unique=True,
        db_index=True,
        help_text="Unique category name"
    )
    description = models.TextField(
        blank=True,
        default='',
        help_text="Optional category description"
    )
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Inactive categories are hidden from the catalog"
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'Category'
        verbose_name_plural = 'Categories'
        ordering = ['name']

    def __str__(self):
        return self.name


class Product(models.Model):
    """
    Catalog item. SKU and barcode are globally unique; products are
    deactivated rather than deleted.
    """

    class Unit(models.TextChoices):
        PIECES = 'pcs', 'Pieces'
        KILOGRAM = 'kg', 'Kilogram'
        POUNDS = 'lbs', 'Pounds'
        LITER = 'liter', 'Liter'
        METER = 'meter', 'Meter'
        BOX = 'box', 'Box'
        PACK = 'pack', 'Pack'

    sku = models.CharField(
        max_length=50,
        unique=True,
        validators=[MinLengthValidator(3)],
        help_text="Stock keeping unit, stored upper-case"
    )
    barcode = models.CharField(
        max_length=100,
        unique=True,
        null=True,
        blank=True,
        help_text="Optional unique barcode"
    )
    name = models.CharField(
        max_length=200,
        db_index=True,
        validators=[MinLengthValidator(2)],
        help_text="Display name"
    )
    description = models.TextField(blank=True, default='')
    category = models.ForeignKey(
        Category,
        on_delete=models.PROTECT,
        related_name='products',
        help_text="Owning category"
    )
    unit = models.CharField(
        max_length=20,
        choices=Unit.choices,
        default=Unit.PIECES,
    )
    price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        default=Decimal('0.00'),
        validators=[MinValueValidator(Decimal('0.00'))],
        help_text="Selling price per unit"
    )
    cost_price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        null=True,
        blank=True,
        validators=[MinValueValidator(Decimal('0.00'))],
        help_text="Purchase cost per unit"
    )
    minimum_stock = models.PositiveIntegerField(
        default=0,
        help_text="Low stock alert threshold"
    )
    maximum_stock = models.PositiveIntegerField(
        default=1000,
        help_text="Upper stock bound, must exceed minimum_stock"
    )
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Whether product can be stocked and moved"
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'Product'
        verbose_name_plural = 'Products'
        ordering = ['name']
        indexes = [
            models.Index(fields=['name', 'is_active']),
            models.Index(fields=['category', 'is_active']),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(maximum_stock__gt=F('minimum_stock')),
                name='product_maximum_gt_minimum_stock',
            ),
        ]

    def __str__(self):
        return f"{self.name} ({self.sku})"

    def clean(self):
        if self.maximum_stock is not None and self.minimum_stock is not None:
            if self.maximum_stock <= self.minimum_stock:
                raise ValidationError(
                    {'maximum_stock': 'Maximum stock must be greater than minimum stock'}
                )


class Inventory(models.Model):
    """
    Balance record for a product.

    current_stock is only ever written by the stock mutator
    (transactions.services.apply_movement). available_stock is derived.
    """
    product = models.OneToOneField(
        Product,
        on_delete=models.CASCADE,
        related_name='inventory',
        help_text="Product this balance belongs to"
    )
    current_stock = models.PositiveIntegerField(
        default=0,
        help_text="Committed stock on hand"
    )
    reserved_stock = models.PositiveIntegerField(
        default=0,
        help_text="Stock held for pending use, never above current_stock"
    )
    location = models.CharField(
        max_length=100,
        blank=True,
        default='',
        help_text="Storage location tag"
    )
    last_updated = models.DateTimeField(auto_now=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = 'Inventory'
        verbose_name_plural = 'Inventories'
        ordering = ['product__name']
        constraints = [
            models.CheckConstraint(
                condition=Q(reserved_stock__lte=F('current_stock')),
                name='inventory_reserved_lte_current',
            ),
        ]
        indexes = [
            models.Index(fields=['current_stock']),
            models.Index(fields=['location']),
        ]

    def __str__(self):
        return f"{self.product.name}: {self.current_stock} units"

    @property
    def available_stock(self) -> int:
        return self.current_stock - self.reserved_stock

    @property
    def is_low_stock(self) -> bool:
        """At or below the product's minimum, compared against current_stock."""
        return self.current_stock <= self.product.minimum_stock

    @property
    def is_out_of_stock(self) -> bool:
        return self.current_stock == 0
