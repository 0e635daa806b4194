import json
import time
import logging
from typing import Any, Optional

import stripe

from flashcard_svc.exceptions import WebhookVerificationError
from flashcard_svc.stripe_events import WebhookEvent, decode_event


class StripeWebhookVerifier:
    """
    Authenticates Stripe webhook deliveries.

    The signature header carries a timestamp and one or more HMAC-SHA256 tags
    over ``"<timestamp>.<raw body>"``. A delivery is accepted only when a tag
    matches and the timestamp is within ``tolerance`` seconds.
    """

    def __init__(self, endpoint_secret: str, tolerance: int = 300) -> None:
        if not endpoint_secret:
            raise ValueError("endpoint_secret must not be empty")
        self.endpoint_secret = endpoint_secret
        self.tolerance = tolerance

    def verify(self, payload: bytes, sig_header: Optional[str]) -> WebhookEvent:
        """
        Verify a raw webhook body and decode it into a typed event.

        :param payload: The exact bytes received; they must not be reparsed before this call.
        :param sig_header: The Stripe-Signature header value.
        :return: The decoded event.
        :raises WebhookVerificationError: on a missing body or signature, a bad tag,
            a stale timestamp or a body that is not a Stripe event.
        """
        if not payload:
            raise WebhookVerificationError("No raw body available")
        if not sig_header:
            raise WebhookVerificationError("No Stripe signature found")
        try:
            body = payload.decode("utf-8")
        except UnicodeDecodeError as e:
            raise WebhookVerificationError("Webhook body is not valid UTF-8") from e

        try:
            stripe.WebhookSignature.verify_header(body, sig_header, self.endpoint_secret, self.tolerance)
        except stripe.SignatureVerificationError as e:
            logging.error(f"Webhook signature verification failed: {e}")
            raise WebhookVerificationError(str(e)) from e

        # verify_header only rejects old timestamps; bound the future side too
        if self._signed_timestamp(sig_header) > time.time() + self.tolerance:
            logging.error("Webhook signature timestamp is too far in the future")
            raise WebhookVerificationError("Timestamp outside the tolerance zone")

        try:
            return decode_event(json.loads(body))
        except ValueError as e:
            logging.error(f"Verified webhook body is not a valid event: {e}")
            raise WebhookVerificationError(f"Invalid payload: {e}") from e

    @staticmethod
    def _signed_timestamp(sig_header: str) -> int:
        # Only called after verify_header accepted the header, so "t" is present
        for item in sig_header.split(","):
            key, _, value = item.partition("=")
            if key.strip() == "t":
                return int(value)
        raise WebhookVerificationError("No timestamp in signature header")


class StripeIntegration:
    """
    This class encapsulates the calls made to the Stripe API: customer lookup,
    checkout-session creation and subscription cancel/reactivate updates.

    Every call is a single attempt; failures are logged and re-raised so the
    caller can surface them.
    """

    def __init__(self, api_key: str) -> None:
        if not api_key:
            raise ValueError("Stripe API key must not be empty")
        self.api_key = api_key

    def find_or_create_customer(self, email: Optional[str], user_id: str) -> str:
        """
        Return the id of the Stripe customer for an email, creating one when none exists.

        :param email: The user's email, may be None when the identity provider has none.
        :param user_id: The user's identity key, stored in customer metadata.
        :return: The Stripe customer id.
        """
        try:
            if email:
                existing = stripe.Customer.list(email=email, limit=1, api_key=self.api_key)
                if existing.data:
                    customer_id = existing.data[0].id
                    logging.info(f"Found existing Stripe customer {customer_id} for user {user_id}")
                    return customer_id
        except stripe.StripeError as e:
            logging.error(f"Error looking up customer for user {user_id}: {e}", exc_info=True)
            raise
        return self.create_customer(email, user_id)

    def create_customer(self, email: Optional[str], user_id: str) -> str:
        params = {"metadata": {"uid": user_id}}
        if email:
            params["email"] = email
        try:
            customer = stripe.Customer.create(api_key=self.api_key, **params)
        except stripe.StripeError as e:
            logging.error(f"Error creating customer for user {user_id}: {e}", exc_info=True)
            raise
        logging.info(f"Created Stripe customer {customer.id} for user {user_id}")
        return customer.id

    def create_checkout_session(
        self,
        customer_id: str,
        user_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
    ) -> Any:
        """
        Create a subscription-mode Checkout Session for a single price.

        The user id travels as ``client_reference_id`` and comes back in the
        ``checkout.session.completed`` event.
        """
        try:
            session = stripe.checkout.Session.create(
                api_key=self.api_key,
                payment_method_types=["card"],
                mode="subscription",
                customer=customer_id,
                line_items=[{"price": price_id, "quantity": 1}],
                success_url=success_url,
                cancel_url=cancel_url,
                client_reference_id=user_id,
            )
        except stripe.StripeError as e:
            logging.error(f"Error creating checkout session for user {user_id}: {e}", exc_info=True)
            raise
        logging.info(f"Created checkout session {session.id} for user {user_id}")
        return session

    def find_active_subscription(self, customer_id: str) -> Optional[Any]:
        try:
            subscriptions = stripe.Subscription.list(
                customer=customer_id,
                status="active",
                limit=1,
                api_key=self.api_key,
            )
        except stripe.StripeError as e:
            logging.error(f"Error listing subscriptions for customer {customer_id}: {e}", exc_info=True)
            raise
        return subscriptions.data[0] if subscriptions.data else None

    def set_cancel_at_period_end(self, subscription_id: str, cancel: bool) -> Any:
        """
        Schedule (or unschedule) cancellation of a subscription at the end of its period.

        :param subscription_id: The ID of the subscription to update.
        :param cancel: True to cancel at period end, False to keep renewing.
        :return: The updated subscription.
        """
        try:
            subscription = stripe.Subscription.modify(
                subscription_id,
                cancel_at_period_end=cancel,
                api_key=self.api_key,
            )
        except stripe.StripeError as e:
            logging.error(f"Error updating subscription {subscription_id}: {e}", exc_info=True)
            raise
        logging.info(f"Subscription {subscription_id} cancel_at_period_end set to {cancel}")
        return subscription
