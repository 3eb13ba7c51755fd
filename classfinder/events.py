"""Booking change feed published to RabbitMQ."""
from __future__ import annotations

import json
import logging
from typing import Any, Dict

import pika
from pika.exceptions import AMQPError

from .config import get_settings
from .models import Booking

logger = logging.getLogger(__name__)


def booking_message(event: str, booking: Booking) -> Dict[str, Any]:
    return {
        "event": event,
        "booking_id": booking.id,
        "user_id": booking.user_id,
        "classroom_id": booking.classroom_id,
        "booking_date": booking.booking_date.isoformat(),
        "start_time": booking.start_time.strftime("%H:%M"),
        "end_time": booking.end_time.strftime("%H:%M"),
        "status": booking.status.value,
    }


def publish_booking_event(event: str, booking: Booking) -> bool:
    """Push a booking change to the durable queue. Returns False when nothing was sent.

    The booking is already committed when this runs, so a broker outage is
    logged and does not fail the request.
    """

    settings = get_settings()
    if not settings.event_publishing_enabled:
        return False

    message = booking_message(event, booking)
    try:
        connection = pika.BlockingConnection(pika.ConnectionParameters(host=settings.rabbitmq_host))
        try:
            channel = connection.channel()
            channel.queue_declare(queue=settings.bookings_queue, durable=True)
            channel.basic_publish(
                exchange="",
                routing_key=settings.bookings_queue,
                body=json.dumps(message),
                properties=pika.BasicProperties(delivery_mode=2),
            )
        finally:
            connection.close()
    except AMQPError as exc:
        logger.warning("Could not publish %s for booking %s: %s", event, booking.id, exc)
        return False
    logger.info("Published %s for booking %s", event, booking.id)
    return True
