"""Order and quota event notifications.

Events are pushed to the notifications queue after the triggering change is
committed. Delivery (email, in-app) is owned by the queue consumer.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from storefront.integrations.service_bus_publisher import ServiceBusPublisher
from storefront.models.models import Order

logger = logging.getLogger(__name__)


class NotificationService:
    """Builds event payloads and hands them to the publisher."""

    @staticmethod
    async def publish_event(
        event_type: str,
        tenant_id: uuid.UUID,
        data: Optional[dict[str, Any]] = None,
    ) -> bool:
        payload = {
            "event": event_type,
            "tenant_id": str(tenant_id),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "data": data or {},
        }
        sent = await ServiceBusPublisher.publish(payload, subject=event_type)
        if not sent:
            logger.debug("Notification %s for tenant %s not delivered", event_type, tenant_id)
        return sent

    @staticmethod
    async def order_event(event_type: str, order: Order, **extra: Any) -> bool:
        data = {
            "order_id": str(order.id),
            "order_number": order.order_number,
            "status": order.status.value,
            "payment_status": order.payment_status.value,
            "customer_email": order.customer_email,
        }
        data.update(extra)
        return await NotificationService.publish_event(event_type, order.tenant_id, data)
