import logging

from flashcard_svc.models.user import SubscriptionStatus
from flashcard_svc.stripe_events import (
    CheckoutCompleted,
    SubscriptionDeleted,
    UnhandledEvent,
    WebhookEvent,
)
from flashcard_svc.user_store import UserStore


class WebhookReconciler:
    """
    Applies verified Stripe events to per-user subscription state.

    Every transition writes its target status directly, so redelivery of an
    event leaves the record unchanged. Store failures propagate to the caller.
    """

    def __init__(self, store: UserStore) -> None:
        self.store = store

    def reconcile(self, event: WebhookEvent) -> None:
        """
        Process a decoded Stripe event and update the subscription record accordingly.

        :param event: A verified, decoded webhook event.
        :raises Exception: on store write failures.
        """
        if isinstance(event, CheckoutCompleted):
            self._checkout_completed(event)
        elif isinstance(event, SubscriptionDeleted):
            self._subscription_deleted(event)
        elif isinstance(event, UnhandledEvent):
            logging.info(f"Unhandled event type: {event.event_type} for event {event.event_id}. No action taken.")
        else:
            raise TypeError(f"Unknown event variant: {type(event).__name__}")

    def _checkout_completed(self, event: CheckoutCompleted) -> None:
        user_id = event.client_reference_id
        if not user_id:
            logging.error(f"Event {event.event_id}: checkout.session.completed has no client_reference_id. No action taken.")
            return
        self.store.set_subscription_status(user_id, SubscriptionStatus.SUBSCRIBED, customer_id=event.customer_id)
        logging.info(f"Event {event.event_id}: checkout.session.completed processed. User {user_id} set to subscribed.")

    def _subscription_deleted(self, event: SubscriptionDeleted) -> None:
        if not event.customer_id:
            logging.error(f"Event {event.event_id}: customer.subscription.deleted has no customer id. No action taken.")
            return
        user_id = self.store.find_user_by_customer_id(event.customer_id)
        if user_id is None:
            logging.info(f"Event {event.event_id}: no user with customer {event.customer_id}. No action taken.")
            return
        self.store.set_subscription_status(user_id, SubscriptionStatus.UNSUBSCRIBED)
        logging.info(f"Event {event.event_id}: customer.subscription.deleted processed. User {user_id} set to unsubscribed.")
