"""Unit tests for the booking change feed publisher."""
import json
from datetime import date, time
from unittest.mock import MagicMock, patch

import pytest
from pika.exceptions import AMQPConnectionError

from classfinder import events
from classfinder.config import Settings
from classfinder.models import Booking, BookingPurpose, BookingStatus


@pytest.fixture()
def booking():
    return Booking(
        id=12,
        user_id=3,
        classroom_id=5,
        booking_date=date(2030, 3, 4),
        start_time=time(9, 0),
        end_time=time(10, 30),
        purpose=BookingPurpose.REVIEW_SESSION,
        estimated_attendees=6,
        status=BookingStatus.PENDING,
    )


@pytest.fixture()
def publishing_enabled():
    with patch.object(events, "get_settings", return_value=Settings(event_publishing_enabled=True)):
        yield


def test_message_shape(booking):
    assert events.booking_message("booking_created", booking) == {
        "event": "booking_created",
        "booking_id": 12,
        "user_id": 3,
        "classroom_id": 5,
        "booking_date": "2030-03-04",
        "start_time": "09:00",
        "end_time": "10:30",
        "status": "pending",
    }


def test_disabled_publisher_sends_nothing(booking):
    with patch("classfinder.events.pika.BlockingConnection") as connection:
        assert events.publish_booking_event("booking_created", booking) is False
    connection.assert_not_called()


def test_publishes_to_durable_queue(booking, publishing_enabled):
    with patch("classfinder.events.pika.BlockingConnection") as connection:
        channel = MagicMock()
        connection.return_value.channel.return_value = channel

        assert events.publish_booking_event("booking_checked_in", booking) is True

    channel.queue_declare.assert_called_once_with(queue="bookings", durable=True)
    body = json.loads(channel.basic_publish.call_args.kwargs["body"])
    assert body["event"] == "booking_checked_in"
    connection.return_value.close.assert_called_once()


def test_broker_outage_is_logged_not_raised(booking, publishing_enabled, caplog):
    with patch("classfinder.events.pika.BlockingConnection", side_effect=AMQPConnectionError("down")):
        assert events.publish_booking_event("booking_created", booking) is False
    assert "Could not publish booking_created" in caplog.text
