import logging

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from flashcard_svc.config import Settings, get_settings, secret_value
from flashcard_svc.exceptions import WebhookVerificationError
from flashcard_svc.identity import AuthenticatedUser, get_current_user
from flashcard_svc.models.base import get_db
from flashcard_svc.models.user import SubscriptionStatus
from flashcard_svc.stripe_event_processor import WebhookReconciler
from flashcard_svc.stripe_integration import StripeIntegration, StripeWebhookVerifier
from flashcard_svc.user_store import UserStore

router = APIRouter()


def get_stripe_integration(settings: Settings = Depends(get_settings)) -> StripeIntegration:
    api_key = secret_value(settings.stripe_secret_key)
    if not api_key:
        logging.error("Stripe secret key not configured")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Stripe secret key not configured")
    return StripeIntegration(api_key)


def _upstream_error(e: stripe.StripeError) -> HTTPException:
    return HTTPException(
        status_code=e.http_status or status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=e.user_message or "Payment provider error",
    )


@router.post("/checkout-session", status_code=200)
def create_checkout_session(
    user: AuthenticatedUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    stripe_integration: StripeIntegration = Depends(get_stripe_integration),
):
    if not settings.stripe_price_id:
        logging.error("Stripe price id not configured")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Stripe price not configured")

    store = UserStore(db)
    record = store.get_subscription(user.uid)
    if record.subscription_status != SubscriptionStatus.UNSUBSCRIBED:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Subscription is already {record.subscription_status.value}",
        )
    try:
        customer_id = record.stripe_customer_id
        if not customer_id:
            found = stripe_integration.find_or_create_customer(user.email, user.uid)
            owner = store.find_user_by_customer_id(found)
            if owner is not None and owner != user.uid:
                logging.info(f"Customer {found} belongs to user {owner}; creating a new one for {user.uid}")
                found = stripe_integration.create_customer(user.email, user.uid)
            customer_id = store.assign_customer_id(user.uid, found)
        session = stripe_integration.create_checkout_session(
            customer_id=customer_id,
            user_id=user.uid,
            price_id=settings.stripe_price_id,
            success_url=settings.checkout_success_url,
            cancel_url=settings.checkout_cancel_url,
        )
    except stripe.StripeError as e:
        raise _upstream_error(e)
    except Exception as e:
        logging.error(e, exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to create checkout session")
    return {"sessionId": session.id, "url": session.url}


@router.post("/webhook", status_code=200)
async def process_webhook(
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    payload = await request.body()
    sig_header = request.headers.get("Stripe-Signature")
    if not payload:
        logging.error("No raw body available for webhook verification")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No raw body available")
    if not sig_header:
        logging.error("No Stripe signature found in headers")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing Stripe-Signature header")
    endpoint_secret = secret_value(settings.stripe_webhook_secret)
    if not endpoint_secret:
        logging.error("No webhook secret configured")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Webhook secret not configured")

    verifier = StripeWebhookVerifier(endpoint_secret, tolerance=settings.webhook_tolerance_seconds)
    # Store access is synchronous; keep it off the event loop
    return await run_in_threadpool(_verify_and_reconcile, verifier, payload, sig_header, db)


def _verify_and_reconcile(verifier: StripeWebhookVerifier, payload: bytes, sig_header: str, db: Session):
    try:
        event = verifier.verify(payload, sig_header)
    except WebhookVerificationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Webhook Error: {e}")

    try:
        WebhookReconciler(UserStore(db)).reconcile(event)
    except Exception as e:
        # A non-2xx answer makes Stripe redeliver the event
        logging.error(e, exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to update subscription status")

    return {"received": True}


@router.get("/subscription", status_code=200)
def get_subscription(
    user: AuthenticatedUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return UserStore(db).get_subscription(user.uid).model_dump(by_alias=True, mode="json")


@router.post("/subscription/cancel", status_code=200)
def cancel_subscription(
    user: AuthenticatedUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    stripe_integration: StripeIntegration = Depends(get_stripe_integration),
):
    return _set_cancel_at_period_end(
        user,
        UserStore(db),
        stripe_integration,
        cancel=True,
        required=SubscriptionStatus.SUBSCRIBED,
        target=SubscriptionStatus.PENDING_CANCELLATION,
    )


@router.post("/subscription/reactivate", status_code=200)
def reactivate_subscription(
    user: AuthenticatedUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    stripe_integration: StripeIntegration = Depends(get_stripe_integration),
):
    return _set_cancel_at_period_end(
        user,
        UserStore(db),
        stripe_integration,
        cancel=False,
        required=SubscriptionStatus.PENDING_CANCELLATION,
        target=SubscriptionStatus.SUBSCRIBED,
    )


def _set_cancel_at_period_end(
    user: AuthenticatedUser,
    store: UserStore,
    stripe_integration: StripeIntegration,
    cancel: bool,
    required: SubscriptionStatus,
    target: SubscriptionStatus,
):
    record = store.get_subscription(user.uid)
    if not record.stripe_customer_id or record.subscription_status != required:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Subscription is {record.subscription_status.value}, expected {required.value}",
        )
    try:
        subscription = stripe_integration.find_active_subscription(record.stripe_customer_id)
        if subscription is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No active subscription found")
        stripe_integration.set_cancel_at_period_end(subscription.id, cancel)
        store.set_subscription_status(user.uid, target)
    except HTTPException:
        raise
    except stripe.StripeError as e:
        raise _upstream_error(e)
    except Exception as e:
        logging.error(e, exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to update subscription")
    return {"success": True, "subscriptionStatus": target.value}
