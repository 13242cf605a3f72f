"""
Inventory Service Layer - Balance store and catalog operations.

Balance store:
    - get_balance / reserve_stock / release_stock / set_location
    - reserve and release lock the balance row like the stock mutator does
    - nothing here writes current_stock; that is transactions.services

Catalog:
    - create_product / update_product / deactivate_product
    - create_category / update_category
    - deactivate_category (refused while the category has active products)
"""
import logging
from typing import Dict, Optional

from django.conf import settings
from django.db import IntegrityError, OperationalError, connection, transaction

from core.exceptions import (
    BusinessRuleViolation,
    ConflictError,
    ContentionError,
    InventoryValidationError,
    NotFoundError,
)
from .models import Category, Inventory, Product

logger = logging.getLogger(__name__)


# =============================================================================
# Row locking
# =============================================================================

# PostgreSQL lock_not_available, raised when lock_timeout expires
LOCK_NOT_AVAILABLE = '55P03'


def apply_lock_timeout() -> None:
    """Bound the wait for row locks in the current transaction (PostgreSQL)."""
    if connection.vendor == 'postgresql':
        with connection.cursor() as cursor:
            cursor.execute(f"SET LOCAL lock_timeout = {int(settings.STOCK_LOCK_TIMEOUT_MS)}")


def is_lock_contention(error: OperationalError) -> bool:
    """True only for an expired lock wait; lost connections or schema errors are not contention."""
    cause = error.__cause__
    if LOCK_NOT_AVAILABLE in (getattr(cause, 'sqlstate', None), getattr(cause, 'pgcode', None)):
        return True
    message = str(error)
    return 'database is locked' in message or 'database table is locked' in message


def lock_balance(product_id: int) -> Inventory:
    """
    Read the balance row for update. Must run inside transaction.atomic().

    Raises:
        NotFoundError: If the product has no balance row
    """
    apply_lock_timeout()
    try:
        return (
            Inventory.objects.select_for_update(of=('self',))
            .select_related('product')
            .get(product_id=product_id)
        )
    except Inventory.DoesNotExist:
        raise NotFoundError(f"Inventory record not found for product {product_id}")


def lock_active_balance(product_id: int) -> Inventory:
    """
    lock_balance() for stock-moving operations: inactive products are not found.

    Raises:
        NotFoundError: If the product has no balance row or is inactive
    """
    inventory = lock_balance(product_id)
    if not inventory.product.is_active:
        raise NotFoundError(f"Product {product_id} not found or inactive")
    return inventory


def _validate_quantity(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise InventoryValidationError(
            "Quantity must be a positive integer",
            errors={'quantity': ['Must be an integer greater than or equal to 1.']},
        )
    return quantity


# =============================================================================
# Balance store
# =============================================================================

def get_balance(product_id: int) -> Inventory:
    """
    Current balance for a product.

    Raises:
        NotFoundError: If no balance row exists
    """
    try:
        return Inventory.objects.select_related('product', 'product__category').get(product_id=product_id)
    except Inventory.DoesNotExist:
        raise NotFoundError(f"Inventory record not found for product {product_id}")


def reserve_stock(product_id: int, quantity: int) -> Inventory:
    """
    Hold stock for pending use.

    Raises:
        InventoryValidationError: If quantity is not a positive integer
        NotFoundError: If no balance row exists or the product is inactive
        BusinessRuleViolation: If quantity exceeds available stock
        ContentionError: If the balance row stayed locked too long
    """
    quantity = _validate_quantity(quantity)
    try:
        with transaction.atomic():
            inventory = lock_active_balance(product_id)
            available = inventory.available_stock
            if quantity > available:
                raise BusinessRuleViolation(
                    f"Insufficient available stock for reservation: "
                    f"requested {quantity}, available {available}"
                )
            inventory.reserved_stock += quantity
            inventory.save(update_fields=['reserved_stock', 'last_updated'])
    except OperationalError as e:
        if not is_lock_contention(e):
            raise
        logger.warning(f"Reserve on product {product_id} hit lock contention: {e}")
        raise ContentionError()

    logger.info(f"Reserved {quantity} of product {product_id}, reserved now {inventory.reserved_stock}")
    return inventory


def release_stock(product_id: int, quantity: int) -> Inventory:
    """
    Return reserved stock to the available pool.

    Raises:
        InventoryValidationError: If quantity is not a positive integer
        NotFoundError: If no balance row exists or the product is inactive
        BusinessRuleViolation: If quantity exceeds reserved stock
        ContentionError: If the balance row stayed locked too long
    """
    quantity = _validate_quantity(quantity)
    try:
        with transaction.atomic():
            inventory = lock_active_balance(product_id)
            if quantity > inventory.reserved_stock:
                raise BusinessRuleViolation(
                    f"Cannot release more stock than is reserved: "
                    f"requested {quantity}, reserved {inventory.reserved_stock}"
                )
            inventory.reserved_stock -= quantity
            inventory.save(update_fields=['reserved_stock', 'last_updated'])
    except OperationalError as e:
        if not is_lock_contention(e):
            raise
        logger.warning(f"Release on product {product_id} hit lock contention: {e}")
        raise ContentionError()

    logger.info(f"Released {quantity} of product {product_id}, reserved now {inventory.reserved_stock}")
    return inventory


def set_location(product_id: int, location: str) -> Inventory:
    """
    Update the storage location tag.

    Raises:
        NotFoundError: If no balance row exists
    """
    try:
        with transaction.atomic():
            inventory = lock_balance(product_id)
            inventory.location = (location or '').strip()
            inventory.save(update_fields=['location', 'last_updated'])
    except OperationalError as e:
        if not is_lock_contention(e):
            raise
        logger.warning(f"Location update on product {product_id} hit lock contention: {e}")
        raise ContentionError()
    return inventory


# =============================================================================
# Catalog
# =============================================================================

def _get_active_category(category_or_id) -> Category:
    category_id = getattr(category_or_id, 'pk', category_or_id)
    try:
        return Category.objects.get(id=category_id, is_active=True)
    except Category.DoesNotExist:
        raise NotFoundError(f"Category {category_id} not found")


def _check_unique(sku: Optional[str], barcode: Optional[str], exclude_id: Optional[int] = None) -> None:
    products = Product.objects.all()
    if exclude_id is not None:
        products = products.exclude(id=exclude_id)
    if sku and products.filter(sku=sku).exists():
        raise ConflictError(f"SKU {sku} already exists")
    if barcode and products.filter(barcode=barcode).exists():
        raise ConflictError(f"Barcode {barcode} already exists")


def _normalize(data: Dict) -> Dict:
    data = dict(data)
    if data.get('sku') is not None:
        data['sku'] = data['sku'].strip().upper()
    if 'barcode' in data:
        data['barcode'] = (data['barcode'] or '').strip() or None
    if data.get('name') is not None:
        data['name'] = data['name'].strip()
    return data


def create_product(data: Dict) -> Product:
    """
    Create a product with its balance row.

    An initial_stock above zero is booked through the stock mutator as an
    IN movement so the ledger accounts for it.

    Args:
        data: Validated product fields plus optional initial_stock and location

    Raises:
        ConflictError: If SKU or barcode is taken
        NotFoundError: If the category does not exist or is inactive
    """
    from transactions.services import apply_movement
    from transactions.models import StockTransaction
    from notifications.events import emit_product_created

    data = _normalize(data)
    initial_stock = data.pop('initial_stock', 0) or 0
    location = (data.pop('location', '') or '').strip()

    try:
        with transaction.atomic():
            data['category'] = _get_active_category(data['category'])
            _check_unique(data.get('sku'), data.get('barcode'))

            product = Product.objects.create(**data)
            Inventory.objects.create(product=product, location=location)

            if initial_stock > 0:
                apply_movement(
                    product.id,
                    StockTransaction.Kind.IN,
                    initial_stock,
                    reference_number=f"INITIAL-{product.sku}",
                    notes='Initial stock entry',
                )
    except IntegrityError as e:
        logger.warning(f"Product create conflicted: {e}")
        raise ConflictError("Product with this SKU or barcode already exists")

    logger.info(f"Created product #{product.id} {product.sku} with initial stock {initial_stock}")
    transaction.on_commit(
        lambda: emit_product_created({'id': product.id, 'sku': product.sku, 'name': product.name}),
        robust=True,
    )
    return product


def update_product(product_id: int, data: Dict) -> Product:
    """
    Update catalog fields. SKU/barcode uniqueness and category existence are
    re-validated.

    Raises:
        NotFoundError: If product or category is missing
        ConflictError: If the new SKU or barcode is taken
    """
    from notifications.events import emit_product_updated

    data = _normalize(data)
    data.pop('initial_stock', None)
    data.pop('location', None)

    try:
        with transaction.atomic():
            try:
                product = Product.objects.select_for_update().get(id=product_id)
            except Product.DoesNotExist:
                raise NotFoundError(f"Product {product_id} not found")

            if 'category' in data:
                data['category'] = _get_active_category(data['category'])
            _check_unique(data.get('sku'), data.get('barcode'), exclude_id=product.id)

            for field, value in data.items():
                setattr(product, field, value)
            if product.maximum_stock <= product.minimum_stock:
                raise InventoryValidationError(
                    "Maximum stock must be greater than minimum stock",
                    errors={'maximum_stock': ['Must be greater than minimum_stock.']},
                )
            product.save()
    except IntegrityError as e:
        logger.warning(f"Product #{product_id} update conflicted: {e}")
        raise ConflictError("Product with this SKU or barcode already exists")

    logger.info(f"Updated product #{product.id} {product.sku}")
    transaction.on_commit(
        lambda: emit_product_updated({'id': product.id, 'sku': product.sku, 'name': product.name}),
        robust=True,
    )
    return product


def deactivate_product(product_id: int) -> Product:
    """Soft delete: products are flagged inactive, never removed."""
    try:
        product = Product.objects.get(id=product_id)
    except Product.DoesNotExist:
        raise NotFoundError(f"Product {product_id} not found")
    product.is_active = False
    product.save(update_fields=['is_active', 'updated_at'])
    logger.info(f"Deactivated product #{product.id} {product.sku}")
    return product


def get_category(category_id: int) -> Category:
    try:
        return Category.objects.get(id=category_id, is_active=True)
    except Category.DoesNotExist:
        raise NotFoundError(f"Category {category_id} not found")


def _check_category_name(name: str, exclude_id: Optional[int] = None) -> None:
    categories = Category.objects.filter(name__iexact=name)
    if exclude_id is not None:
        categories = categories.exclude(id=exclude_id)
    if categories.exists():
        raise ConflictError(f"Category {name} already exists")


def create_category(data: Dict) -> Category:
    """
    Raises:
        ConflictError: If the name is taken (case-insensitive)
    """
    data = dict(data)
    data['name'] = data['name'].strip()
    _check_category_name(data['name'])
    try:
        category = Category.objects.create(**data)
    except IntegrityError:
        raise ConflictError(f"Category {data['name']} already exists")
    logger.info(f"Created category #{category.id} {category.name}")
    return category


def update_category(category_id: int, data: Dict) -> Category:
    category = get_category(category_id)
    if 'name' in data:
        data = dict(data, name=data['name'].strip())
        _check_category_name(data['name'], exclude_id=category.id)
    for field, value in data.items():
        setattr(category, field, value)
    try:
        category.save()
    except IntegrityError:
        raise ConflictError(f"Category {category.name} already exists")
    logger.info(f"Updated category #{category.id} {category.name}")
    return category


def deactivate_category(category_id: int) -> Category:
    """
    Soft delete a category.

    Raises:
        NotFoundError: If the category is missing
        BusinessRuleViolation: If it still owns active products
    """
    try:
        category = Category.objects.get(id=category_id)
    except Category.DoesNotExist:
        raise NotFoundError(f"Category {category_id} not found")

    if category.products.filter(is_active=True).exists():
        raise BusinessRuleViolation(
            "Cannot delete category with active products. "
            "Please deactivate or move products first."
        )
    category.is_active = False
    category.save(update_fields=['is_active', 'updated_at'])
    logger.info(f"Deactivated category #{category.id} {category.name}")
    return category
