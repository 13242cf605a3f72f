"""
Celery tasks for stock alerts.

Tasks:
    - send_stock_alert: Out-of-band notice to managers after a low/out-of-stock alert
"""
import logging

from celery import shared_task

logger = logging.getLogger(__name__)

LOW_STOCK = 'low_stock'
OUT_OF_STOCK = 'out_of_stock'


@shared_task(
    bind=True,
    max_retries=3,
    default_retry_delay=60,
    autoretry_for=(Exception,),
    retry_backoff=True
)
def send_stock_alert(self, product_id: int, alert: str, current_stock: int, minimum_stock: int):
    """
    Deliver a stock alert outside the live channel.

    In production this is where email/SMS/chat hooks go; here the notice is
    written to the log.

    Args:
        product_id: Product that crossed a threshold
        alert: 'low_stock' or 'out_of_stock'
        current_stock: Balance after the movement
        minimum_stock: Product's minimum stock threshold

    Returns:
        Dict with delivery details
    """
    from inventory.models import Product

    try:
        product = Product.objects.select_related('category').get(id=product_id)
    except Product.DoesNotExist:
        logger.error(f"Product #{product_id} not found for stock alert")
        return {'status': 'error', 'message': f'Product {product_id} not found'}

    headline = 'OUT OF STOCK' if alert == OUT_OF_STOCK else 'LOW STOCK'
    notice = f"""
    ===============================================
    {headline} - {product.name} ({product.sku})
    ===============================================
    Category: {product.category.name}
    Current stock: {current_stock} {product.unit}
    Minimum stock: {minimum_stock} {product.unit}
    Shortage: {max(0, minimum_stock - current_stock)}
    ===============================================
    """

    logger.warning(notice)

    return {
        'status': 'success',
        'product_id': product_id,
        'alert': alert,
        'message': f'{headline.title()} notice sent for product {product_id}'
    }
