from flask import Blueprint, jsonify, request, current_app
from flask_login import login_required, current_user
import stripe # Stripe Python library, used here for webhook signature errors.

from forms import CreatePaymentIntentForm, ConfirmPaymentForm
from models.payment import PaymentStatusEnum
from services.payments import (PaymentError, create_payment_intent, confirm_payment, payment_history_query,
                               get_payment, payment_stats, check_stripe_connection, construct_webhook_event,
                               handle_webhook_event)
from extensions import db
from utils.helpers import parse_pagination_args, pagination_payload, validation_error_response

# Blueprint for Stripe payments. Mounted under '/api/payments'.
# Every route needs a bearer token except the webhook, which Stripe calls and which
# is authenticated by its signature instead.
payments_bp = Blueprint('payments', __name__)

def _payment_error(e):
    return jsonify({'success': False, 'message': e.message}), e.status_code

def _unexpected_error(action, e):
    db.session.rollback()
    current_app.logger.error(f"Unexpected error during {action}: {e}", exc_info=True)
    return jsonify({'success': False, 'message': 'An unexpected error occurred. Please try again later.'}), 500

@payments_bp.route('/create-intent', methods=['POST'])
@login_required
def create_intent():
    """
    Creates a Stripe PaymentIntent for the current user.
    The frontend completes the payment with Stripe.js using the returned client_secret.
    """
    form = CreatePaymentIntentForm()
    if not form.validate_on_submit():
        return validation_error_response(form.errors)

    user = current_user._get_current_object()
    try:
        payment_intent, payment = create_payment_intent(
            user,
            amount=form.amount.data,
            currency=form.currency.data or 'usd',
            description=form.description.data,
            metadata=form.metadata.data,
            item_id=form.item_id.data,
        )
    except PaymentError as e:
        db.session.rollback()
        if e.status_code == 422: # Item not owned by the user: reported like any other field error.
            return validation_error_response({'item_id': [e.message]})
        return _payment_error(e)
    except Exception as e:
        return _unexpected_error('payment intent creation', e)

    return jsonify({
        'success': True,
        'data': {
            'id': payment_intent.id,
            'client_secret': payment_intent.client_secret,
            'amount': payment_intent.amount,
            'currency': payment_intent.currency,
            'status': payment_intent.status,
            'payment': payment.to_dict(),
        },
    }), 201

@payments_bp.route('/confirm', methods=['POST'])
@login_required
def confirm():
    """Syncs a payment with its PaymentIntent after the frontend has confirmed it with Stripe.js."""
    form = ConfirmPaymentForm()
    if not form.validate_on_submit():
        return validation_error_response(form.errors)

    try:
        payment = confirm_payment(current_user._get_current_object(), form.payment_intent_id.data)
    except PaymentError as e:
        db.session.rollback()
        return _payment_error(e)
    except Exception as e:
        return _unexpected_error('payment confirmation', e)

    if payment.status != PaymentStatusEnum.SUCCEEDED:
        return jsonify({'success': False, 'message': 'Payment not successful', 'data': payment.to_dict()}), 400
    return jsonify({'success': True, 'data': payment.to_dict()})

@payments_bp.route('/history', methods=['GET'])
@login_required
def history():
    """
    Paginated payment history of the current user, newest first.

    Query parameters:
        page, per_page: pagination.
        item_id: only payments for this item.
        status: pending, succeeded, failed or canceled.
    """
    page, per_page = parse_pagination_args(request.args)
    item_id = request.args.get('item_id', type=int)

    status = None
    raw_status = request.args.get('status')
    if raw_status:
        try:
            status = PaymentStatusEnum(raw_status.lower())
        except ValueError:
            return validation_error_response({'status': ['The selected status is invalid.']})

    pagination = payment_history_query(current_user, item_id=item_id, status=status).paginate(
        page=page, per_page=per_page, error_out=False)
    payload = pagination_payload(pagination)
    payload['success'] = True
    return jsonify(payload)

@payments_bp.route('/stats', methods=['GET'])
@login_required
def stats():
    return jsonify({'success': True, 'data': payment_stats(current_user)})

@payments_bp.route('/test-stripe', methods=['GET'])
@login_required
def test_stripe():
    """Checks that the configured Stripe API key works by retrieving the account balance."""
    try:
        balance = check_stripe_connection()
    except PaymentError as e:
        return _payment_error(e)

    return jsonify({'success': True, 'message': 'Stripe connection successful', 'data': balance})

@payments_bp.route('/<int:payment_id>', methods=['GET'])
@login_required
def show(payment_id):
    payment = get_payment(current_user, payment_id)
    if payment is None:
        return jsonify({'success': False, 'message': 'Payment not found'}), 404
    return jsonify({'success': True, 'data': payment.to_dict()})

@payments_bp.route('/webhook', methods=['POST'])
def stripe_webhook():
    """
    Receives PaymentIntent events from Stripe and updates local payments.

    The raw body is verified against the Stripe-Signature header before anything is
    processed. Returns 200 for every verified event, handled or not, so Stripe does
    not retry it.
    """
    payload = request.get_data() # Raw body; the signature is computed over the exact bytes.
    sig_header = request.headers.get('Stripe-Signature')

    try:
        event = construct_webhook_event(payload, sig_header)
    except ValueError as e:
        # Invalid payload - not valid JSON.
        current_app.logger.warning(f"Stripe webhook error: Invalid payload. {e}")
        return jsonify({'success': False, 'message': 'Invalid payload'}), 400
    except stripe.SignatureVerificationError as e:
        # Invalid signature - the request may be spoofed or the webhook secret misconfigured.
        current_app.logger.warning(f"Stripe webhook error: Invalid signature. {e}")
        return jsonify({'success': False, 'message': 'Invalid signature'}), 400
    except PaymentError as e:
        return _payment_error(e)

    try:
        handle_webhook_event(event)
    except Exception as e:
        # 500 makes Stripe retry the event later.
        return _unexpected_error(f"webhook event {getattr(event, 'id', 'unknown')}", e)

    return jsonify({'success': True})
