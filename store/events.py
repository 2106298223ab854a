"""
Live notifications for cashier and seller screens.

Services receive an :class:`EventPublisher` when they are built. Delivery is
deferred until the surrounding transaction commits and is best effort: a
failing transport is logged and never reaches the caller.
"""

import logging
from functools import partial

from django.conf import settings
from django.db import transaction
from django.dispatch import Signal, receiver
from django.utils.module_loading import import_string

logger = logging.getLogger(__name__)

# Sent with keyword arguments group, event and payload.
store_event = Signal()


class Group:
    EVERYONE = "everyone"
    CASHIERS = "cashier"
    SELLERS = "seller"


class Event:
    NEW_ORDER = "new_order"
    ORDER_UPDATED = "order_updated"
    ORDER_STATUS_CHANGE = "order_status_change"
    ORDER_PRINTED = "order_printed"
    STOCK_UPDATE = "stock_update"
    PRODUCT_CREATED = "product_created"
    PRODUCT_UPDATED = "product_updated"
    PRODUCT_DELETED = "product_deleted"


class NullTransport:
    def send(self, group, event, payload):
        pass


class SignalTransport:
    """Hands events to ``store_event`` receivers (socket gateways, loggers)."""

    def send(self, group, event, payload):
        for handler, result in store_event.send_robust(
            sender=self.__class__, group=group, event=event, payload=payload
        ):
            if isinstance(result, Exception):
                logger.error(
                    "Receiver %r failed on %s",
                    handler,
                    event,
                    exc_info=(type(result), result, result.__traceback__),
                )


class EventPublisher:
    def __init__(self, transport=None):
        self.transport = transport or NullTransport()

    def publish(self, event, payload, group=Group.EVERYONE):
        try:
            transaction.on_commit(partial(self._deliver, group, event, payload))
        except Exception:
            logger.exception("Could not schedule %s for %s", event, group)

    def _deliver(self, group, event, payload):
        try:
            self.transport.send(group, event, payload)
        except Exception:
            logger.exception("Broadcast of %s to %s failed", event, group)


def get_default_publisher():
    transport_path = getattr(
        settings, "STORE_EVENT_TRANSPORT", "store.events.SignalTransport"
    )
    return EventPublisher(import_string(transport_path)())


@receiver(store_event)
def log_event(sender, group, event, payload, **kwargs):
    logger.debug("event %s -> %s: %s", event, group, payload)
