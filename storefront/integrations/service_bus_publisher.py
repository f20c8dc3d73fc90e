import json
import logging
import asyncio
import uuid
from typing import Optional

from azure.servicebus.aio import ServiceBusClient
from azure.servicebus import ServiceBusMessage
from azure.servicebus.exceptions import (
    ServiceBusError,
    ServiceBusAuthenticationError,
    ServiceBusConnectionError,
)

from storefront.core.config import settings

logger = logging.getLogger(__name__)

SERVICE_BUS_TIMEOUT = 30


class ServiceBusPublisher:
    @staticmethod
    async def publish(payload: dict, subject: str, message_id: Optional[str] = None) -> bool:
        """Send one JSON event to the notifications queue.

        Returns False instead of raising on any failure; callers have already
        committed their state by the time they publish.
        """
        if not settings.SERVICEBUS_CONNECTION_STRING:
            logger.debug("Service Bus connection string not configured, skipping %s", subject)
            return False

        if not settings.SERVICEBUS_QUEUE_NAME:
            logger.warning("Service Bus queue name not configured")
            return False

        message_id = message_id or str(uuid.uuid4())

        try:
            async def _send_message():
                async with ServiceBusClient.from_connection_string(
                    conn_str=settings.SERVICEBUS_CONNECTION_STRING,
                    logging_enable=False,
                ) as client:
                    async with client.get_queue_sender(
                        queue_name=settings.SERVICEBUS_QUEUE_NAME
                    ) as sender:
                        message = ServiceBusMessage(
                            json.dumps(payload, default=str),
                            content_type="application/json",
                            subject=subject,
                            message_id=message_id,
                            application_properties={
                                "tenant_id": str(payload.get("tenant_id") or ""),
                                "timestamp": payload.get("timestamp"),
                            },
                        )
                        await sender.send_messages(message)

            await asyncio.wait_for(_send_message(), timeout=SERVICE_BUS_TIMEOUT)
            logger.info("Message published (subject=%s, message_id=%s)", subject, message_id)
            return True

        except asyncio.TimeoutError:
            logger.error("Service Bus publish timed out (subject=%s)", subject)
            return False

        except ServiceBusAuthenticationError:
            logger.error("Service Bus authentication failed")
            return False

        except ServiceBusConnectionError:
            logger.error("Service Bus connection failed")
            return False

        except ServiceBusError:
            logger.error("Service Bus error (subject=%s)", subject)
            return False

        except TypeError:
            logger.error("Invalid payload for JSON serialization (subject=%s)", subject)
            return False

        except Exception:
            logger.exception("Unexpected Service Bus error")
            return False
