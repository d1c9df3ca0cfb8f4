"""
Webhook system for sending order event notifications.

Allows external systems (accounting, e-mail receipts, ...) to subscribe to
order events such as ``order.created`` and ``order.status_changed``.
"""
import asyncio
import logging
from datetime import datetime
from typing import Dict, Any, Optional
import httpx
from fastapi import BackgroundTasks

from . import config

logger = logging.getLogger(__name__)


async def send_webhook(event_type: str, data: Dict[str, Any], client: Optional[httpx.AsyncClient] = None) -> None:
    """
    Send webhook notifications to all registered URLs.

    Args:
        event_type: Type of event (e.g., "order.created", "order.status_changed")
        data: Event data payload
        client: HTTP client to reuse; a short-lived one is created otherwise
    """
    if not config.WEBHOOK_URLS:
        return

    payload = {
        "event": event_type,
        "data": data,
        "timestamp": datetime.utcnow().isoformat(),
    }

    if client is not None:
        await asyncio.gather(*(send_single_webhook(client, url, payload) for url in config.WEBHOOK_URLS), return_exceptions=True)
        return

    async with httpx.AsyncClient(timeout=config.WEBHOOK_TIMEOUT) as own_client:
        await asyncio.gather(*(send_single_webhook(own_client, url, payload) for url in config.WEBHOOK_URLS), return_exceptions=True)


async def send_single_webhook(client: httpx.AsyncClient, url: str, payload: Dict[str, Any]) -> bool:
    """
    Send a webhook to a single URL.

    Returns:
        True if the receiver accepted the event, False otherwise
    """
    try:
        response = await client.post(url, json=payload)
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        logger.warning(f"Webhook error for {url}: {e}")
        return False

    if response.status_code >= 400:
        logger.warning(f"Webhook failed for {url}: HTTP {response.status_code}")
        return False
    return True


def _schedule(background_tasks: BackgroundTasks, event_type: str, data: Dict[str, Any]) -> None:
    # Runs after the response is sent; nothing is queued without subscribers.
    if config.WEBHOOK_URLS:
        background_tasks.add_task(send_webhook, event_type, data)


def notify_order_created(background_tasks: BackgroundTasks, order_data: Dict[str, Any]) -> None:
    """Notify subscribers that an order was created."""
    _schedule(background_tasks, "order.created", order_data)


def notify_order_status_changed(background_tasks: BackgroundTasks, order_id: str, old_status: str, new_status: str) -> None:
    """
    Notify that an order status changed.

    Args:
        background_tasks: Tasks of the current request
        order_id: Order ID
        old_status: Previous status
        new_status: New status
    """
    data = {
        "order_id": order_id,
        "old_status": old_status,
        "new_status": new_status
    }
    _schedule(background_tasks, "order.status_changed", data)
