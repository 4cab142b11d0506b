from __future__ import annotations

import logging
import sqlite3
from typing import Optional

from .configuration import UNSET_TEMPLATE_ID, ProofSettings
from .database import ProofDatabase
from .exceptions import ProofWorkerError
from .models import MockupBinding, Order

logger = logging.getLogger(__name__)


def default_binding(settings: ProofSettings) -> Optional[MockupBinding]:
    """The globally configured template/slot, or None when unset."""
    template = settings.default_mockup_template
    slot = settings.default_smart_object_slot
    if not template or not slot or template == UNSET_TEMPLATE_ID:
        return None
    return MockupBinding(mockup_uuid=template, smart_object_uuid=slot)


def resolve_binding(order: Order, db: ProofDatabase, settings: ProofSettings) -> Optional[MockupBinding]:
    """
    Pick the mockup template/slot for an order.

    Order of precedence:
    1. The binding for the SKU of the order's first line item
    2. The configured default template/slot
    3. None, meaning callers fall back to raw artwork

    Lookup errors are logged and treated as "no SKU binding".
    """
    sku = order.products[0].product_id if order.products else None

    if sku:
        try:
            binding = db.get_mockup_binding(sku)
        except (sqlite3.Error, ProofWorkerError) as exc:
            logger.warning(f"Binding lookup for SKU {sku} failed: {exc}")
            binding = None
        if binding is not None:
            logger.info(f"Found mockup binding for SKU {sku}")
            return binding

    binding = default_binding(settings)
    if binding is not None:
        logger.info(f"Using default mockup template for order {order.id}")
        return binding

    logger.info(f"No mockup binding for order {order.id}, will use raw artwork")
    return None
