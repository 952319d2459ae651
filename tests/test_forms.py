import pytest
from decimal import Decimal
from forms import (RegistrationForm, LoginForm, ResetPasswordForm, UpdateItemForm, StoreItemForm,
                   CreatePaymentIntentForm, ConfirmPaymentForm, SocialCallbackForm)
from models.user import User # For testing unique email validation

# The forms read JSON request bodies, so each test builds its form inside a
# request context carrying the payload.

def validate_json(app, form_class, payload, method='POST'):
    with app.test_request_context('/', method=method, json=payload):
        form = form_class()
        valid = form.validate()
        return form, valid

REGISTRATION = {
    'name': 'Test User',
    'email': 'NewUser@Example.com ',
    'password': 'password123',
    'password_confirmation': 'password123',
}

def test_registration_form_valid_data(app, db):
    """Valid payload passes; the email is normalized to lowercase."""
    form, valid = validate_json(app, RegistrationForm, REGISTRATION)
    assert valid is True
    assert not form.errors
    assert form.email.data == 'newuser@example.com'

def test_registration_form_missing_name(app, db):
    payload = dict(REGISTRATION)
    del payload['name']
    form, valid = validate_json(app, RegistrationForm, payload)
    assert valid is False
    assert form.errors['name'] == ['The name field is required.']

def test_registration_form_invalid_email_format(app, db):
    form, valid = validate_json(app, RegistrationForm, dict(REGISTRATION, email='invalid-email'))
    assert valid is False
    assert 'The email must be a valid email address.' in form.errors['email']

def test_registration_form_password_too_short(app, db):
    form, valid = validate_json(app, RegistrationForm, dict(REGISTRATION, password='short', password_confirmation='short'))
    assert valid is False
    assert form.errors['password'] == ['The password must be at least 8 characters.']

def test_registration_form_passwords_do_not_match(app, db):
    form, valid = validate_json(app, RegistrationForm, dict(REGISTRATION, password_confirmation='password456'))
    assert valid is False
    assert form.errors['password_confirmation'] == ['The password confirmation does not match.']

def test_registration_form_email_already_exists(app, db): # Uses db fixture
    """Test RegistrationForm for an email that already exists in the database."""
    existing = User(name='Existing', email='newuser@example.com')
    existing.set_password('password123')
    db.session.add(existing)
    db.session.commit()

    form, valid = validate_json(app, RegistrationForm, REGISTRATION)
    assert valid is False
    assert form.errors['email'] == ['The email has already been taken.']

def test_registration_form_rejects_non_string_name(app, db):
    form, valid = validate_json(app, RegistrationForm, dict(REGISTRATION, name=12345))
    assert valid is False
    assert 'The name must be a string.' in form.errors['name']

def test_type_error_is_not_replaced_by_required_message(app_context, app):
    form, valid = validate_json(app, LoginForm, {'email': {'address': 'user@example.com'}, 'password': 12345678})
    assert valid is False
    assert form.errors['email'] == ['The email must be a string.']
    assert form.errors['password'] == ['The password must be a string.']

def test_array_body_is_treated_as_empty_payload(app_context, app):
    # A list of pairs must not be read as key/value data.
    form, valid = validate_json(app, LoginForm, [['email', 'user@example.com'], ['password', 'password123']])
    assert valid is False
    assert form.errors['email'] == ['The email field is required.']
    assert form.errors['password'] == ['The password field is required.']

def test_login_form_requires_both_fields(app_context, app):
    form, valid = validate_json(app, LoginForm, {})
    assert valid is False
    assert form.errors['email'] == ['The email field is required.']
    assert form.errors['password'] == ['The password field is required.']

def test_reset_password_form_requires_token(app_context, app):
    form, valid = validate_json(app, ResetPasswordForm, {
        'email': 'user@example.com', 'password': 'password123', 'password_confirmation': 'password123',
    })
    assert valid is False
    assert form.errors['token'] == ['The token field is required.']

def test_social_callback_form_requires_code(app_context, app):
    form, valid = validate_json(app, SocialCallbackForm, {'state': 'link'})
    assert valid is False
    assert form.errors['code'] == ['Authorization code is required']

# --- Items ---

def test_store_item_form_valid_with_float_price(app_context, app):
    form, valid = validate_json(app, StoreItemForm, {'name': ' Lamp ', 'description': 'Desk lamp', 'price': 19.99})
    assert valid is True
    assert form.name.data == 'Lamp' # Whitespace is stripped.
    assert form.price.data == Decimal('19.99')

def test_store_item_form_price_is_optional_and_nullable(app_context, app):
    _, valid = validate_json(app, StoreItemForm, {'name': 'Lamp', 'description': 'Desk lamp'})
    assert valid is True
    form, valid = validate_json(app, StoreItemForm, {'name': 'Lamp', 'description': 'Desk lamp', 'price': None})
    assert valid is True
    assert form.price.data is None

def test_store_item_form_rejects_negative_price(app_context, app):
    form, valid = validate_json(app, StoreItemForm, {'name': 'Lamp', 'description': 'Desk lamp', 'price': -1})
    assert valid is False
    assert 'price' in form.errors

def test_store_item_form_enforces_lengths(app_context, app):
    form, valid = validate_json(app, StoreItemForm, {'name': 'n' * 256, 'description': 'd' * 1001})
    assert valid is False
    assert form.errors['name'] == ['The item name may not be greater than 255 characters.']
    assert form.errors['description'] == ['The item description may not be greater than 1000 characters.']

def test_update_item_form_skips_absent_fields(app_context, app):
    form, valid = validate_json(app, UpdateItemForm, {'price': 5}, method='PATCH')
    assert valid is True
    assert not form.name.raw_data
    assert not form.description.raw_data

def test_update_item_form_rejects_present_but_empty_name(app_context, app):
    form, valid = validate_json(app, UpdateItemForm, {'name': ''}, method='PATCH')
    assert valid is False
    assert form.errors['name'] == ['The item name is required.']

# --- Payments ---

def test_payment_intent_form_valid(app_context, app):
    form, valid = validate_json(app, CreatePaymentIntentForm, {
        'amount': 1999, 'currency': 'EUR', 'description': 'Order #1', 'metadata': {'order': '1'},
    })
    assert valid is True
    assert form.amount.data == 1999
    assert form.currency.data == 'eur' # Currency codes are lowercased.
    assert form.metadata.data == {'order': '1'}

@pytest.mark.parametrize('amount, message', [
    (49, 'The minimum payment amount is $0.50.'),
    (100000000, 'The maximum payment amount is $999,999.99.'),
    (12.5, 'The payment amount must be a whole number in cents.'),
])
def test_payment_intent_form_amount_bounds(app_context, app, amount, message):
    form, valid = validate_json(app, CreatePaymentIntentForm, {'amount': amount})
    assert valid is False
    assert message in form.errors['amount']

def test_payment_intent_form_requires_amount(app_context, app):
    form, valid = validate_json(app, CreatePaymentIntentForm, {'currency': 'usd'})
    assert valid is False
    assert 'The payment amount is required.' in form.errors['amount']

def test_payment_intent_form_rejects_unsupported_currency(app_context, app):
    form, valid = validate_json(app, CreatePaymentIntentForm, {'amount': 1000, 'currency': 'xyz'})
    assert valid is False
    assert form.errors['currency'] == ['The selected currency is not supported.']

def test_payment_intent_form_metadata_must_be_object_of_strings(app_context, app):
    form, valid = validate_json(app, CreatePaymentIntentForm, {'amount': 1000, 'metadata': ['a']})
    assert valid is False
    assert form.errors['metadata'] == ['The metadata must be an array.']

    form, valid = validate_json(app, CreatePaymentIntentForm, {'amount': 1000, 'metadata': {'order': 1}})
    assert valid is False
    assert form.errors['metadata'] == ['Each metadata value must be a string.']

    form, valid = validate_json(app, CreatePaymentIntentForm, {'amount': 1000, 'metadata': {'note': 'x' * 501}})
    assert valid is False
    assert form.errors['metadata'] == ['Each metadata value may not be greater than 500 characters.']

def test_confirm_payment_form_requires_payment_intent_prefix(app_context, app):
    form, valid = validate_json(app, ConfirmPaymentForm, {'payment_intent_id': 'ch_123'})
    assert valid is False
    assert form.errors['payment_intent_id'] == ['The payment intent ID must be a valid Stripe payment intent ID.']

    _, valid = validate_json(app, ConfirmPaymentForm, {'payment_intent_id': 'pi_123'})
    assert valid is True
