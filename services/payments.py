"""
Stripe PaymentIntent lifecycle, mirrored into the local `payments` ledger.

Routes call into this module; it talks to Stripe, persists the result and raises
`PaymentError` with an HTTP status when Stripe rejects a request.
"""
import stripe # Stripe Python library for payment processing.
from flask import current_app
from sqlalchemy import func

from extensions import db
from models.item import Item
from models.payment import Payment, PaymentStatusEnum

# Webhook event types that move a local payment to a terminal status.
WEBHOOK_STATUS_EVENTS = {
    'payment_intent.succeeded': PaymentStatusEnum.SUCCEEDED,
    'payment_intent.payment_failed': PaymentStatusEnum.FAILED,
    'payment_intent.canceled': PaymentStatusEnum.CANCELED,
}


class PaymentError(Exception):
    """A payment operation failed; `status_code` is the HTTP status to answer with."""

    def __init__(self, message, status_code=500):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def _ensure_configured():
    if not stripe.api_key:
        current_app.logger.critical("STRIPE_SECRET_KEY is not configured; payment requests cannot be processed.")
        raise PaymentError('Payment processing is not configured.', 500)


def _translate_stripe_error(e, action, user_id=None):
    """
    Logs a Stripe SDK exception and converts it into a PaymentError.

    Args:
        e (stripe.StripeError): The exception raised by the SDK.
        action (str): What was being attempted, for log and error messages.
        user_id (int, optional): For log context.
    """
    who = f"user {user_id}" if user_id is not None else "anonymous request"
    if isinstance(e, stripe.CardError):
        # Card declined, insufficient funds, expired card... e.user_message is safe to show.
        current_app.logger.warning(f"Stripe CardError during {action} for {who}: {e.code} - {e.user_message}")
        return PaymentError(f"Your card was declined: {e.user_message or 'Please try a different card or contact your bank.'}", 402)
    if isinstance(e, stripe.RateLimitError):
        current_app.logger.error(f"Stripe RateLimitError during {action} for {who}: {e}")
        return PaymentError("We're currently experiencing high traffic with our payment provider. Please try again in a few moments.", 429)
    if isinstance(e, stripe.InvalidRequestError):
        current_app.logger.error(f"Stripe InvalidRequestError during {action} for {who}: {e}")
        return PaymentError(f"Payment processing error: {e.user_message or str(e)}", 400)
    if isinstance(e, stripe.AuthenticationError):
        # Server-side configuration issue (wrong or revoked API key).
        current_app.logger.critical(f"Stripe AuthenticationError during {action}: {e}. Check Stripe API key configuration.")
        return PaymentError("There's an issue with our payment provider configuration. Please contact support.", 500)
    if isinstance(e, stripe.APIConnectionError):
        current_app.logger.error(f"Stripe APIConnectionError during {action}: {e}")
        return PaymentError("We couldn't connect to our payment provider. Please try again.", 503)
    current_app.logger.error(f"Generic StripeError during {action} for {who}: {e}")
    return PaymentError(f"Payment processing error: {e.user_message or str(e)}", 502)


def _intent_metadata(payment_intent):
    metadata = getattr(payment_intent, 'metadata', None)
    return dict(metadata) if metadata else {}


def resolve_item_id(user, item_id=None, metadata=None):
    """
    Finds the item a payment is for: an explicit item_id, else metadata['item_id'].

    Returns:
        int or None: The item ID if it exists and belongs to `user`.
    Raises:
        PaymentError: If an explicit item_id does not reference one of the user's items.
    """
    if item_id is not None:
        item = Item.query.filter_by(id=item_id, user_id=user.id).first()
        if item is None:
            raise PaymentError('The selected item is invalid.', 422)
        return item.id

    raw = (metadata or {}).get('item_id')
    if raw is not None and str(raw).isdigit():
        item = Item.query.filter_by(id=int(raw), user_id=user.id).first()
        return item.id if item else None
    return None


def create_payment_intent(user, amount, currency='usd', description=None, metadata=None, item_id=None):
    """
    Creates a Stripe PaymentIntent and records it locally as a pending payment.

    Args:
        user (User): The paying user.
        amount (int): Amount in the smallest currency unit.
        currency (str): ISO currency code, lowercase.
        description (str, optional): Shown in the Stripe dashboard.
        metadata (dict, optional): String key/values stored on both the intent and the local row.
        item_id (int, optional): The user's item this payment is for.

    Returns:
        tuple: (stripe.PaymentIntent, Payment)
    Raises:
        PaymentError: If Stripe rejects the request or the item is invalid.
    """
    _ensure_configured()
    currency = currency or 'usd'
    resolved_item_id = resolve_item_id(user, item_id=item_id, metadata=metadata)

    # The intent carries the user so webhooks and confirmations can be traced back without the local row.
    intent_metadata = dict(metadata or {})
    intent_metadata.update({'user_id': str(user.id), 'user_email': user.email})
    if resolved_item_id is not None:
        intent_metadata['item_id'] = str(resolved_item_id)

    try:
        payment_intent = stripe.PaymentIntent.create(
            amount=amount,
            currency=currency,
            description=description,
            metadata=intent_metadata,
            automatic_payment_methods={'enabled': True},
        )
    except stripe.StripeError as e:
        raise _translate_stripe_error(e, 'payment intent creation', user.id) from e

    payment = Payment(
        user_id=user.id,
        item_id=resolved_item_id,
        stripe_payment_intent_id=payment_intent.id,
        amount=amount,
        currency=currency,
        status=PaymentStatusEnum.PENDING,
        description=description,
        payment_metadata=metadata or None,
    )
    db.session.add(payment)
    db.session.commit()

    current_app.logger.info(f"Payment intent {payment_intent.id} created for user {user.id} (amount: {amount} {currency}).")
    return payment_intent, payment


def confirm_payment(user, payment_intent_id):
    """
    Re-reads a PaymentIntent from Stripe and syncs the local payment's status.

    If no local row exists yet but the intent's metadata names this user, the row is
    created from the intent.

    Returns:
        Payment: The updated payment.
    Raises:
        PaymentError: 404 if the intent is unknown or belongs to someone else,
                      or the translated Stripe error.
    """
    _ensure_configured()
    try:
        payment_intent = stripe.PaymentIntent.retrieve(payment_intent_id)
    except stripe.StripeError as e:
        raise _translate_stripe_error(e, 'payment confirmation', user.id) from e

    status = PaymentStatusEnum.from_stripe_status(payment_intent.status) or PaymentStatusEnum.PENDING
    payment = Payment.query.filter_by(stripe_payment_intent_id=payment_intent_id).first()

    if payment is None:
        metadata = _intent_metadata(payment_intent)
        if metadata.get('user_id') != str(user.id):
            current_app.logger.warning(f"User {user.id} tried to confirm unknown payment intent {payment_intent_id}.")
            raise PaymentError('Payment not found', 404)
        # Known to Stripe for this user but never recorded locally (e.g., created from another client).
        payment = Payment(
            user_id=user.id,
            item_id=resolve_item_id(user, metadata=metadata),
            stripe_payment_intent_id=payment_intent.id,
            amount=payment_intent.amount,
            currency=payment_intent.currency,
            description=getattr(payment_intent, 'description', None),
        )
        db.session.add(payment)
    elif payment.user_id != user.id:
        current_app.logger.warning(f"User {user.id} tried to confirm payment {payment.id} owned by user {payment.user_id}.")
        raise PaymentError('Payment not found', 404)

    if not payment.apply_status(status):
        current_app.logger.warning(f"Payment {payment.id} already succeeded; ignoring Stripe status '{payment_intent.status}'.")
    db.session.commit()

    current_app.logger.info(f"Payment {payment.id} ({payment_intent_id}) confirmed with Stripe status '{payment_intent.status}'.")
    return payment


def payment_history_query(user, item_id=None, status=None):
    """
    Newest-first query over a user's payments, optionally filtered by item and status.

    Args:
        status (PaymentStatusEnum, optional)
    """
    query = Payment.query.filter_by(user_id=user.id)
    if item_id is not None:
        query = query.filter(Payment.item_id == item_id)
    if status is not None:
        query = query.filter(Payment.status == status)
    return query.order_by(Payment.created_at.desc(), Payment.id.desc())


def get_payment(user, payment_id):
    """The user's payment with this ID, or None."""
    return Payment.query.filter_by(id=payment_id, user_id=user.id).first()


def payment_stats(user):
    """Counts and the succeeded total for a user's payments."""
    base = Payment.query.filter_by(user_id=user.id)
    succeeded = base.filter(Payment.status == PaymentStatusEnum.SUCCEEDED)
    total_amount = db.session.query(func.coalesce(func.sum(Payment.amount), 0)).filter(
        Payment.user_id == user.id,
        Payment.status == PaymentStatusEnum.SUCCEEDED,
    ).scalar()
    return {
        'total_payments': base.count(),
        'total_amount': int(total_amount or 0),
        'successful_payments': succeeded.count(),
    }


def check_stripe_connection():
    """
    Verifies the configured API key by retrieving the account balance.

    Returns:
        dict: livemode flag and available balances ([{amount, currency}, ...]).
    """
    _ensure_configured()
    try:
        balance = stripe.Balance.retrieve()
    except stripe.StripeError as e:
        raise _translate_stripe_error(e, 'Stripe connection test') from e
    return {
        'livemode': bool(getattr(balance, 'livemode', False)),
        'available': [{'amount': entry.amount, 'currency': entry.currency} for entry in (getattr(balance, 'available', None) or [])],
    }


def construct_webhook_event(payload, sig_header):
    """
    Verifies the Stripe-Signature header and parses the event.

    Raises:
        ValueError: Invalid payload.
        stripe.SignatureVerificationError: Invalid signature.
        PaymentError: STRIPE_WEBHOOK_SECRET is not configured.
    """
    secret = current_app.config.get('STRIPE_WEBHOOK_SECRET')
    if not secret:
        current_app.logger.critical("STRIPE_WEBHOOK_SECRET is not configured; rejecting webhook.")
        raise PaymentError('Webhook endpoint is not configured.', 500)
    return stripe.Webhook.construct_event(payload, sig_header, secret)


def handle_webhook_event(event):
    """
    Applies a verified Stripe event to the local ledger.

    Handles payment_intent.succeeded, payment_intent.payment_failed and
    payment_intent.canceled. Other event types are logged and ignored.

    Returns:
        Payment or None: The updated payment, if the event matched one.
    """
    event_id = getattr(event, 'id', 'unknown_event_id')
    current_app.logger.info(f"Stripe Webhook Event ID {event_id}: processing event type '{event.type}'.")

    status = WEBHOOK_STATUS_EVENTS.get(event.type)
    if status is None:
        current_app.logger.info(f"Stripe Webhook Event ID {event_id}: unhandled event type '{event.type}'.")
        return None

    payment_intent = event.data.object
    payment = Payment.query.filter_by(stripe_payment_intent_id=payment_intent.id).first()
    if payment is None:
        # Intents created outside this API (e.g., from the Stripe dashboard) have no local row.
        current_app.logger.warning(f"Stripe Webhook Event ID {event_id}: no local payment for intent {payment_intent.id}.")
        return None

    if not payment.apply_status(status):
        current_app.logger.info(f"Stripe Webhook Event ID {event_id}: payment {payment.id} already succeeded; "
                                f"ignoring stale '{event.type}'.")
        return payment
    db.session.commit()

    current_app.logger.info(f"Payment {payment.id} marked as {status.value} via webhook (intent {payment_intent.id}).")
    return payment
