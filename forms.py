from decimal import Decimal, InvalidOperation
from flask import request
from flask_wtf import FlaskForm
from werkzeug.datastructures import ImmutableMultiDict
from wtforms import Field, StringField, PasswordField, IntegerField, DecimalField
from wtforms.validators import (DataRequired, InputRequired, Email, EqualTo, Length, NumberRange,
                                AnyOf, Regexp, ValidationError, StopValidation) # Import standard validators.
from models.user import User # Import User model for email validation.

SUPPORTED_CURRENCIES = ['usd', 'eur', 'gbp', 'cad', 'aud', 'jpy', 'chf', 'sek', 'nok', 'dkk']

class ApiForm(FlaskForm):
    """
    Base class for API input validation.

    Flask-WTF reads the JSON request body when the request is sent as application/json,
    so these forms validate API payloads the same way they would validate HTML forms.
    CSRF is disabled: API clients authenticate with bearer tokens, not cookies.
    """
    class Meta:
        csrf = False

        def wrap_formdata(self, form, formdata):
            # Arrays and scalars carry no fields; validate them as an empty payload.
            if request.is_json and not isinstance(request.get_json(silent=True), dict):
                formdata = ImmutableMultiDict()
            return super().wrap_formdata(form, formdata)

class Sometimes:
    """
    Validates a field only when the client actually sent it.

    Used for partial updates: an absent field is skipped entirely, while a field that
    is present (even as an empty string) goes through the rest of the validator chain.
    """
    field_flags = {'optional': True}

    def __call__(self, form, field):
        if not field.raw_data:
            field.errors[:] = []
            raise StopValidation()

class Nullable:
    """
    Like Optional, but also treats JSON null as "no value".

    wtforms only recognises empty strings as missing, so a JSON null would otherwise
    reach the range and length validators.
    """
    field_flags = {'optional': True}

    def __call__(self, form, field):
        if not field.raw_data or field.raw_data[0] is None or (isinstance(field.raw_data[0], str) and not field.raw_data[0].strip()):
            field.errors[:] = []
            raise StopValidation()

class JSONStringMixin:
    """Rejects non-string JSON values (numbers, lists, objects) instead of passing them through."""
    def process_formdata(self, valuelist):
        if valuelist and valuelist[0] is not None and not isinstance(valuelist[0], str):
            self.data = None
            raise ValueError(f"The {self.label.text.lower()} must be a string.")
        super().process_formdata(valuelist)

    def pre_validate(self, form):
        # Stops the chain before DataRequired can replace the type error with "required".
        if self.process_errors:
            raise StopValidation()

class JSONStringField(JSONStringMixin, StringField):
    pass

class JSONPasswordField(JSONStringMixin, PasswordField):
    pass

def lowercase(value):
    return value.strip().lower() if isinstance(value, str) else value

def strip(value):
    return value.strip() if isinstance(value, str) else value

class StrictIntegerField(IntegerField):
    """
    IntegerField that rejects fractional numbers instead of truncating them.

    JSON payloads deliver numbers already decoded, so 12.5 would otherwise be silently
    read as 12. JSON null is treated the same as a missing value.
    """
    def __init__(self, label=None, validators=None, invalid_message=None, **kwargs):
        super().__init__(label, validators, **kwargs)
        self.invalid_message = invalid_message

    def process_formdata(self, valuelist):
        if not valuelist or valuelist[0] is None or valuelist[0] == '':
            return
        value = valuelist[0]
        try:
            if isinstance(value, bool):
                raise ValueError
            if isinstance(value, float):
                if not value.is_integer():
                    raise ValueError
                value = int(value)
            self.data = int(value)
        except (TypeError, ValueError):
            self.data = None
            raise ValueError(self.invalid_message or self.gettext('Not a valid integer value.'))

class JSONDecimalField(DecimalField):
    """DecimalField that converts JSON floats through their string form (19.99 stays 19.99)."""
    def process_formdata(self, valuelist):
        if not valuelist or valuelist[0] is None or valuelist[0] == '':
            return
        try:
            self.data = Decimal(str(valuelist[0]))
        except (InvalidOperation, ValueError):
            self.data = None
            raise ValueError(self.gettext('Not a valid decimal value.'))

class MetadataField(Field):
    """
    Accepts a JSON object of string values (Stripe metadata).

    Non-string scalars are rejected rather than coerced, and each value is limited to 500 characters.
    """
    def process_formdata(self, valuelist):
        if not valuelist or valuelist[0] is None:
            self.data = None
            return
        value = valuelist[0]
        if not isinstance(value, dict):
            self.data = None
            raise ValueError('The metadata must be an array.')
        self.data = value

    def pre_validate(self, form):
        if not self.data:
            return
        for key, value in self.data.items():
            if not isinstance(value, str):
                raise ValidationError('Each metadata value must be a string.')
            if len(value) > 500:
                raise ValidationError('Each metadata value may not be greater than 500 characters.')

# --- Authentication ---

class RegistrationForm(ApiForm):
    """
    Payload for POST /api/register.
    Custom validation is included to check if an email is already registered.
    """
    name = JSONStringField('Name', filters=[strip], validators=[DataRequired(message="The name field is required."), Length(max=255, message="The name may not be greater than 255 characters.")])
    # Email field: requires data, must be a valid email format and unique.
    email = JSONStringField('Email', filters=[lowercase], validators=[DataRequired(message="The email field is required."), Email(message="The email must be a valid email address."), Length(max=255, message="The email may not be greater than 255 characters.")])
    # Password field: requires data and must be at least 8 characters long.
    password = JSONPasswordField('Password', validators=[DataRequired(message="The password field is required."), Length(min=8, message="The password must be at least 8 characters.")])
    # Confirmation must match the 'password' field.
    password_confirmation = JSONPasswordField('Confirm Password', validators=[DataRequired(message="Please confirm your password."), EqualTo('password', message="The password confirmation does not match.")])

    def validate_email(self, email):
        """
        Custom validator for the email field.
        Checks if the provided email address already exists in the database.

        Raises:
            ValidationError: If the email is already taken.
        """
        user = User.query.filter_by(email=email.data).first() # Data is lowercased by the field filter.
        if user:
            raise ValidationError('The email has already been taken.')

class LoginForm(ApiForm):
    """Payload for POST /api/login. Credential checking happens in the route."""
    email = JSONStringField('Email', filters=[lowercase], validators=[DataRequired(message="The email field is required."), Email(message="The email must be a valid email address.")])
    password = JSONPasswordField('Password', validators=[DataRequired(message="The password field is required.")])

class ForgotPasswordForm(ApiForm):
    email = JSONStringField('Email', filters=[lowercase], validators=[DataRequired(message="The email field is required."), Email(message="The email must be a valid email address.")])

class ResetPasswordForm(ApiForm):
    token = JSONStringField('Token', validators=[DataRequired(message="The token field is required.")])
    email = JSONStringField('Email', filters=[lowercase], validators=[DataRequired(message="The email field is required."), Email(message="The email must be a valid email address.")])
    password = JSONPasswordField('Password', validators=[DataRequired(message="The password field is required."), Length(min=8, message="The password must be at least 8 characters.")])
    password_confirmation = JSONPasswordField('Confirm Password', validators=[DataRequired(message="Please confirm your password."), EqualTo('password', message="The password confirmation does not match.")])

class ProfileForm(ApiForm):
    name = JSONStringField('Name', filters=[strip], validators=[DataRequired(message="The name field is required."), Length(max=255, message="The name may not be greater than 255 characters.")])

class ChangePasswordForm(ApiForm):
    """
    Sets or changes the password of the current user.
    Whether current_password is required depends on the user, so the route checks it.
    """
    current_password = JSONPasswordField('Current Password', validators=[Nullable()])
    password = JSONPasswordField('Password', validators=[DataRequired(message="The password field is required."), Length(min=8, message="The password must be at least 8 characters.")])
    password_confirmation = JSONPasswordField('Confirm Password', validators=[DataRequired(message="Please confirm your password."), EqualTo('password', message="The password confirmation does not match.")])

class SocialCallbackForm(ApiForm):
    code = JSONStringField('Code', validators=[DataRequired(message="Authorization code is required")])
    state = JSONStringField('State', validators=[Nullable()])

# --- Items ---

class StoreItemForm(ApiForm):
    name = JSONStringField('Item name', filters=[strip], validators=[DataRequired(message="The item name is required."), Length(max=255, message="The item name may not be greater than 255 characters.")])
    description = JSONStringField('Item description', filters=[strip], validators=[DataRequired(message="The item description is required."), Length(max=1000, message="The item description may not be greater than 1000 characters.")])
    price = JSONDecimalField('Price', places=2, validators=[Nullable(), NumberRange(min=0, max=99999999.99, message="The price must be between 0 and 99,999,999.99.")])

class UpdateItemForm(ApiForm):
    """Partial update: only the fields present in the payload are validated and applied."""
    name = JSONStringField('Item name', filters=[strip], validators=[Sometimes(), DataRequired(message="The item name is required."), Length(max=255, message="The item name may not be greater than 255 characters.")])
    description = JSONStringField('Item description', filters=[strip], validators=[Sometimes(), DataRequired(message="The item description is required."), Length(max=1000, message="The item description may not be greater than 1000 characters.")])
    price = JSONDecimalField('Price', places=2, validators=[Nullable(), NumberRange(min=0, max=99999999.99, message="The price must be between 0 and 99,999,999.99.")])

# --- Payments ---

class CreatePaymentIntentForm(ApiForm):
    # Amount in the smallest currency unit: 50 cents up to $999,999.99.
    amount = StrictIntegerField('Amount', invalid_message="The payment amount must be a whole number in cents.", validators=[
        InputRequired(message="The payment amount is required."),
        NumberRange(min=50, message="The minimum payment amount is $0.50."),
        NumberRange(max=99999999, message="The maximum payment amount is $999,999.99."),
    ])
    currency = JSONStringField('Currency', filters=[lowercase], validators=[
        Nullable(),
        Length(min=3, max=3, message="The currency code must be exactly 3 characters."),
        AnyOf(SUPPORTED_CURRENCIES, message="The selected currency is not supported."),
    ])
    description = JSONStringField('Description', validators=[Nullable(), Length(max=1000, message="The description may not be greater than 1000 characters.")])
    metadata = MetadataField('Metadata')
    item_id = StrictIntegerField('Item', validators=[Nullable()])

class ConfirmPaymentForm(ApiForm):
    payment_intent_id = JSONStringField('Payment Intent', filters=[strip], validators=[
        DataRequired(message="The payment intent ID is required."),
        Length(max=255, message="The payment intent ID may not be greater than 255 characters."),
        Regexp(r'^pi_', message="The payment intent ID must be a valid Stripe payment intent ID."),
    ])
