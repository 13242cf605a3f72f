"""
Named events emitted to live subscribers.

Routing:
    - stock_updated       -> all, product:<id>, dashboard
    - low_stock_alert     -> role groups listed in NOTIFICATIONS_ALERT_ROLES
    - out_of_stock_alert  -> all
    - transaction_created -> dashboard
    - product_created     -> all, dashboard
    - product_updated     -> all, product:<id>

Every emit_* function is best-effort: failures are logged and swallowed.
"""
import logging

from django.conf import settings

from .hub import ALL, DASHBOARD, hub, product_group, role_group

logger = logging.getLogger(__name__)

STOCK_UPDATED = 'stock_updated'
LOW_STOCK_ALERT = 'low_stock_alert'
OUT_OF_STOCK_ALERT = 'out_of_stock_alert'
TRANSACTION_CREATED = 'transaction_created'
PRODUCT_CREATED = 'product_created'
PRODUCT_UPDATED = 'product_updated'


def _emit(event: str, data: dict, groups) -> int:
    try:
        return hub.publish(event, data, groups)
    except Exception:
        logger.exception(f"Failed to emit {event}")
        return 0


def alert_groups():
    return [role_group(role) for role in settings.NOTIFICATIONS_ALERT_ROLES]


def emit_stock_update(product_id, current_stock, previous_stock, kind, quantity) -> int:
    data = {
        'product_id': product_id,
        'current_stock': current_stock,
        'previous_stock': previous_stock,
        'kind': kind,
        'quantity': quantity,
    }
    return _emit(STOCK_UPDATED, data, [ALL, product_group(product_id), DASHBOARD])


def emit_low_stock_alert(product_id, current_stock, minimum_stock) -> int:
    data = {
        'product_id': product_id,
        'current_stock': current_stock,
        'minimum_stock': minimum_stock,
    }
    return _emit(LOW_STOCK_ALERT, data, alert_groups())


def emit_out_of_stock_alert(product_id) -> int:
    return _emit(OUT_OF_STOCK_ALERT, {'product_id': product_id}, [ALL])


def emit_transaction_created(data: dict) -> int:
    return _emit(TRANSACTION_CREATED, data, [DASHBOARD])


def emit_product_created(data: dict) -> int:
    return _emit(PRODUCT_CREATED, data, [ALL, DASHBOARD])


def emit_product_updated(data: dict) -> int:
    return _emit(PRODUCT_UPDATED, data, [ALL, product_group(data['id'])])
