"""
Typed view of the Stripe events the reconciler acts on.

A verified webhook body is decoded once, at the boundary, into one of
``CheckoutCompleted``, ``SubscriptionDeleted`` or ``UnhandledEvent``.
"""
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel

CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"
CUSTOMER_SUBSCRIPTION_DELETED = "customer.subscription.deleted"


class CheckoutCompleted(BaseModel):
    event_id: Optional[str] = None
    client_reference_id: Optional[str] = None
    customer_id: Optional[str] = None


class SubscriptionDeleted(BaseModel):
    event_id: Optional[str] = None
    customer_id: Optional[str] = None


class UnhandledEvent(BaseModel):
    event_id: Optional[str] = None
    event_type: str


WebhookEvent = Union[CheckoutCompleted, SubscriptionDeleted, UnhandledEvent]


def _customer_id(value: Any) -> Optional[str]:
    # Stripe sends either the id or the expanded customer object
    if isinstance(value, dict):
        value = value.get("id")
    if isinstance(value, str) and value:
        return value
    return None


def _optional_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None


def decode_event(payload: Dict[str, Any]) -> WebhookEvent:
    """
    Decode a Stripe event payload into its typed variant.

    :param payload: the parsed JSON body of the webhook request.
    :raises ValueError: if the payload is not an event object with a ``type``.
    """
    if not isinstance(payload, dict):
        raise ValueError("Event payload must be a JSON object")
    event_type = payload.get("type")
    if not event_type or not isinstance(event_type, str):
        raise ValueError("Missing 'type' in event payload")

    event_id = _optional_str(payload.get("id"))
    data = payload.get("data")
    obj = data.get("object") if isinstance(data, dict) else None
    if not isinstance(obj, dict):
        obj = {}

    if event_type == CHECKOUT_SESSION_COMPLETED:
        return CheckoutCompleted(
            event_id=event_id,
            client_reference_id=_optional_str(obj.get("client_reference_id")),
            customer_id=_customer_id(obj.get("customer")),
        )
    if event_type == CUSTOMER_SUBSCRIPTION_DELETED:
        return SubscriptionDeleted(event_id=event_id, customer_id=_customer_id(obj.get("customer")))
    return UnhandledEvent(event_id=event_id, event_type=event_type)
