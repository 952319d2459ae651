from datetime import datetime
from urllib.parse import urlencode
from flask import Blueprint, jsonify, current_app, g
from flask_login import login_required, current_user
from sqlalchemy.exc import IntegrityError

from forms import (RegistrationForm, LoginForm, ProfileForm, ChangePasswordForm,
                   ForgotPasswordForm, ResetPasswordForm)
from models.user import User
from models.access_token import PersonalAccessToken
from extensions import db
from utils.helpers import validation_error_response
from utils.mail import send_password_reset_email
from utils.security import generate_password_reset_token, verify_password_reset_token

# Blueprint for token-based authentication.
# Mounted under '/api' in create_app, so e.g. '/register' is served at '/api/register'.
auth_bp = Blueprint('auth', __name__)

def _server_error(message, e):
    """Rolls back the session, logs the exception and builds the generic 500 response."""
    db.session.rollback()
    current_app.logger.error(f"{message}: {e}", exc_info=True)
    return jsonify({'message': message, 'error': 'An unexpected error occurred. Please try again later.'}), 500

# Route for user registration.
@auth_bp.route('/register', methods=['POST'])
def register():
    """
    Creates a local account and issues its first access token.
    Returns 201 with the user and the plain-text token, or 422 with field errors.
    """
    form = RegistrationForm() # Reads the JSON body.
    if not form.validate_on_submit():
        return validation_error_response(form.errors)

    # Locally registered emails are treated as verified; there is no verification mail flow.
    new_user = User(name=form.name.data, email=form.email.data, email_verified_at=datetime.utcnow())
    new_user.set_password(form.password.data) # Hash the password for secure storage.

    try:
        db.session.add(new_user)
        token = new_user.create_token('auth_token') # Flushes the user, then the token.
        db.session.commit()
    except IntegrityError:
        # Two registrations for the same email racing past the form's uniqueness check.
        db.session.rollback()
        current_app.logger.warning(f"Registration failed for email {form.email.data}: email already exists (IntegrityError).")
        return jsonify({'message': 'The email has already been taken.'}), 409
    except Exception as e:
        return _server_error('Registration failed', e)

    current_app.logger.info(f"New user registered: {new_user.email}")
    return jsonify({
        'user': new_user.to_dict(),
        'token': token,
        'message': 'User registered successfully',
    }), 201

# Route for user login.
@auth_bp.route('/login', methods=['POST'])
def login():
    """Exchanges email/password credentials for a new access token."""
    form = LoginForm()
    if not form.validate_on_submit():
        return validation_error_response(form.errors)

    user = User.query.filter_by(email=form.email.data).first()
    # Same response for unknown email and wrong password, so accounts cannot be enumerated.
    if user is None or not user.check_password(form.password.data):
        current_app.logger.warning(f"Failed login attempt for email: {form.email.data}")
        return jsonify({'message': 'Invalid credentials'}), 401

    try:
        token = user.create_token('auth_token')
        db.session.commit()
    except Exception as e:
        return _server_error('Login failed', e)

    current_app.logger.info(f"User {user.email} logged in.")
    return jsonify({
        'user': user.to_dict(),
        'token': token,
        'message': 'Login successful',
    })

# Route for user logout.
@auth_bp.route('/logout', methods=['POST'])
@login_required
def logout():
    """Revokes the access token the request was authenticated with. Other devices stay logged in."""
    access_token = g.get('current_access_token')
    try:
        if access_token is not None:
            db.session.delete(access_token)
            db.session.commit()
    except Exception as e:
        return _server_error('Logout failed', e)

    current_app.logger.info(f"User {current_user.email} logged out.")
    return jsonify({'message': 'Logged out successfully'})

@auth_bp.route('/me', methods=['GET'])
@login_required
def me():
    return jsonify({'user': current_user.to_dict()})

@auth_bp.route('/me', methods=['PUT'])
@login_required
def update_profile():
    """Updates the profile of the current user (currently just the display name)."""
    form = ProfileForm()
    if not form.validate_on_submit():
        return validation_error_response(form.errors)

    try:
        current_user.name = form.name.data
        db.session.commit()
    except Exception as e:
        return _server_error('Profile update failed', e)

    current_app.logger.info(f"User {current_user.id} updated their profile.")
    return jsonify({'user': current_user.to_dict(), 'message': 'Profile updated successfully'})

@auth_bp.route('/me/password', methods=['POST'])
@login_required
def change_password():
    """
    Sets or changes the current user's password.

    Accounts created through a social provider have no password yet; they can set one
    without `current_password`. Every other access token of the user is revoked.
    """
    form = ChangePasswordForm()
    if not form.validate_on_submit():
        return validation_error_response(form.errors)

    user = current_user._get_current_object()
    if user.has_password() and not form.current_password.data:
        return validation_error_response({'current_password': ['The current password field is required.']})
    if user.has_password() and not user.check_password(form.current_password.data):
        current_app.logger.warning(f"User {user.id} supplied an incorrect current password.")
        return validation_error_response({'current_password': ['The current password is incorrect.']})

    try:
        user.set_password(form.password.data)
        # Sign out other sessions; keep the token this request came in with.
        current_token = g.get('current_access_token')
        other_tokens = PersonalAccessToken.query.filter(PersonalAccessToken.user_id == user.id)
        if current_token is not None:
            other_tokens = other_tokens.filter(PersonalAccessToken.id != current_token.id)
        other_tokens.delete(synchronize_session=False)
        db.session.commit()
    except Exception as e:
        return _server_error('Password update failed', e)

    current_app.logger.info(f"User {user.id} updated their password.")
    return jsonify({'user': user.to_dict(), 'message': 'Password updated successfully'})

@auth_bp.route('/refresh', methods=['POST'])
@login_required
def refresh():
    """Rotates the current access token: the old one is revoked and a new one returned."""
    user = current_user._get_current_object()
    access_token = g.get('current_access_token')
    try:
        if access_token is not None:
            db.session.delete(access_token)
        token = user.create_token('auth_token')
        db.session.commit()
    except Exception as e:
        return _server_error('Token refresh failed', e)

    current_app.logger.info(f"Access token refreshed for user {user.id}.")
    return jsonify({
        'user': user.to_dict(),
        'token': token,
        'message': 'Token refreshed successfully',
    })

# --- Password reset ---

@auth_bp.route('/forgot-password', methods=['POST'])
def forgot_password():
    """
    Emails a password reset link pointing at the frontend reset page.
    The link carries a time-limited token and the email address.
    """
    form = ForgotPasswordForm()
    if not form.validate_on_submit():
        return validation_error_response(form.errors)

    user = User.query.filter_by(email=form.email.data).first()
    if user is None:
        current_app.logger.info(f"Password reset requested for unknown email: {form.email.data}")
        return jsonify({'message': 'Unable to send password reset link'}), 400

    try:
        token = generate_password_reset_token(user)
    except ValueError as e: # FERNET_KEY missing; already logged as critical.
        current_app.logger.error(f"Could not issue password reset token for user {user.id}: {e}")
        return jsonify({'message': 'Unable to send password reset link'}), 400

    reset_url = f"{current_app.config['FRONTEND_URL']}/reset-password?{urlencode({'token': token, 'email': user.email})}"
    if not send_password_reset_email(user, reset_url):
        return jsonify({'message': 'Unable to send password reset link'}), 400

    current_app.logger.info(f"Password reset link sent to user {user.id}.")
    return jsonify({'message': 'Password reset link sent to your email'})

@auth_bp.route('/reset-password', methods=['POST'])
def reset_password():
    """
    Sets a new password using a token from the reset email.
    All of the user's access tokens are revoked.
    """
    form = ResetPasswordForm()
    if not form.validate_on_submit():
        return validation_error_response(form.errors)

    user = User.query.filter_by(email=form.email.data).first()
    if user is None or not verify_password_reset_token(form.token.data, user):
        current_app.logger.warning(f"Invalid or expired password reset token for email: {form.email.data}")
        return jsonify({'message': 'Password reset failed'}), 400

    try:
        user.set_password(form.password.data) # Also invalidates the reset token just used.
        PersonalAccessToken.query.filter_by(user_id=user.id).delete(synchronize_session=False)
        db.session.commit()
    except Exception as e:
        return _server_error('Password reset failed', e)

    current_app.logger.info(f"Password reset completed for user {user.id}.")
    return jsonify({'message': 'Password reset successfully'})
