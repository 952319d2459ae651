from datetime import datetime
from flask import Blueprint, jsonify, current_app
from flask_login import login_required, current_user
from sqlalchemy.exc import IntegrityError

from forms import SocialCallbackForm
from models.user import User
from extensions import db
from services.social import (SocialAuthError, build_authorization_url, fetch_social_user,
                             is_configured)
from utils.decorators import provider_required

# Blueprint for "Sign in with ..." and for linking a provider to an existing account.
# Mounted under '/api'.
social_bp = Blueprint('social', __name__)

# The frontend uses this state to tell a link callback from a sign-in callback.
LINK_STATE = 'link'

def _configuration_missing(provider):
    current_app.logger.critical(f"{provider} OAuth credentials are not configured.")
    return jsonify({
        'message': 'OAuth configuration missing',
        'error': f'{provider.capitalize()} sign-in is not configured on this server.',
    }), 500

def _code_missing(form):
    return jsonify({'message': 'Authorization code is required', 'errors': form.errors}), 400

def _social_error(e):
    return jsonify({'message': 'Authentication failed', 'error': e.message}), e.status_code

def _find_or_create_user(provider, social_user):
    """
    Resolves the local account for a provider profile.

    Lookup order:
    1. An account already linked to this provider account.
    2. An account with the same email. If it has no provider yet, this provider is linked to it.
    3. Otherwise a new account is created. It has no password until the user sets one.

    Returns:
        tuple: (User, created_flag)
    """
    user = User.query.filter_by(provider=provider, provider_id=social_user.id).first()
    if user:
        # Keep the avatar in sync with the provider.
        if social_user.avatar:
            user.avatar = social_user.avatar
        return user, False

    user = User.query.filter_by(email=social_user.email.lower()).first()
    if user:
        if not user.provider:
            user.provider = provider
            user.provider_id = social_user.id
            user.avatar = social_user.avatar
            current_app.logger.info(f"Linking {provider} ID {social_user.id} to existing user {user.email}.")
        return user, False

    user = User(
        name=social_user.name or social_user.email.split('@')[0],
        email=social_user.email.lower(),
        provider=provider,
        provider_id=social_user.id,
        avatar=social_user.avatar,
        email_verified_at=datetime.utcnow(), # The provider has verified the address.
    )
    db.session.add(user)
    return user, True

@social_bp.route('/auth/<provider>/url', methods=['GET'])
@provider_required
def redirect_url(provider):
    """Returns the provider authorization URL the frontend should send the browser to."""
    if not is_configured(provider):
        return _configuration_missing(provider)

    try:
        url = build_authorization_url(provider)
    except Exception as e:
        current_app.logger.error(f"Could not build {provider} authorization URL: {e}", exc_info=True)
        return jsonify({'message': f'Unable to redirect to {provider}.', 'error': str(e)}), 500

    return jsonify({'url': url, 'message': 'Social auth URL generated successfully'})

@social_bp.route('/auth/<provider>/callback', methods=['POST'])
@provider_required
def callback(provider):
    """
    Completes a social sign-in: exchanges the authorization code, resolves the
    local account and issues an access token.
    """
    form = SocialCallbackForm()
    if not form.validate_on_submit():
        return _code_missing(form)
    if not is_configured(provider):
        return _configuration_missing(provider)

    try:
        social_user = fetch_social_user(provider, form.code.data)
    except SocialAuthError as e:
        return _social_error(e)

    if not social_user.email:
        current_app.logger.warning(f"{provider} OAuth: provider did not return an email for user ID {social_user.id}.")
        return jsonify({
            'message': 'Authentication failed',
            'error': f'Email not provided by {provider.capitalize()}. Please ensure your email is shared with this application.',
        }), 400

    try:
        user, created = _find_or_create_user(provider, social_user)
        token = user.create_token('auth_token')
        db.session.commit()
    except IntegrityError:
        # A concurrent sign-in created the same account or link first.
        db.session.rollback()
        current_app.logger.warning(f"{provider} OAuth: IntegrityError for email {social_user.email} or provider_id {social_user.id}.")
        return jsonify({
            'message': 'Authentication failed',
            'error': f'This {provider.capitalize()} account is already associated with another user.',
        }), 409
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"{provider} OAuth: error saving user {social_user.email}: {e}", exc_info=True)
        return jsonify({'message': 'Authentication failed', 'error': 'An unexpected error occurred.'}), 500

    if created:
        current_app.logger.info(f"New user {user.email} registered via {provider} OAuth.")
    current_app.logger.info(f"User {user.email} logged in via {provider} OAuth.")
    return jsonify({
        'user': user.to_dict(),
        'token': token,
        'message': f'Successfully authenticated with {provider.capitalize()}',
    })

def _already_linked(user):
    return jsonify({
        'message': 'Account already linked',
        'error': f'Account already linked to {user.provider.capitalize()}',
    }), 400

@social_bp.route('/auth/<provider>/link', methods=['GET'])
@login_required
@provider_required
def link_url(provider):
    """Authorization URL for linking `provider` to the signed-in account."""
    if current_user.provider:
        return _already_linked(current_user)
    if not is_configured(provider):
        return _configuration_missing(provider)

    try:
        url = build_authorization_url(provider, state=LINK_STATE)
    except Exception as e:
        current_app.logger.error(f"Could not build {provider} link URL: {e}", exc_info=True)
        return jsonify({'message': f'Unable to redirect to {provider}.', 'error': str(e)}), 500

    return jsonify({'url': url, 'message': f'Redirect to {provider.capitalize()} to link account'})

@social_bp.route('/auth/<provider>/link', methods=['POST'])
@login_required
@provider_required
def link_account(provider):
    """Links the provider account behind `code` to the signed-in user."""
    user = current_user._get_current_object()
    if user.provider:
        return _already_linked(user)

    form = SocialCallbackForm()
    if not form.validate_on_submit():
        return _code_missing(form)
    if not is_configured(provider):
        return _configuration_missing(provider)

    try:
        social_user = fetch_social_user(provider, form.code.data)
    except SocialAuthError as e:
        return _social_error(e)

    existing = User.query.filter(
        User.provider == provider,
        User.provider_id == social_user.id,
        User.id != user.id,
    ).first()
    if existing:
        current_app.logger.warning(f"User {user.id} tried to link {provider} ID {social_user.id} already linked to user {existing.id}.")
        return jsonify({
            'message': 'Account already linked',
            'error': f'This {provider.capitalize()} account is already linked to another user',
        }), 400

    try:
        user.provider = provider
        user.provider_id = social_user.id
        user.avatar = social_user.avatar
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        current_app.logger.warning(f"IntegrityError linking {provider} ID {social_user.id} to user {user.id}.")
        return jsonify({
            'message': 'Account already linked',
            'error': f'This {provider.capitalize()} account is already linked to another user',
        }), 400
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error linking {provider} for user {user.id}: {e}", exc_info=True)
        return jsonify({'message': 'Failed to link account', 'error': 'An unexpected error occurred.'}), 500

    current_app.logger.info(f"User {user.id} linked their {provider} account.")
    return jsonify({'user': user.to_dict(), 'message': f'Successfully linked {provider.capitalize()} account'})

@social_bp.route('/auth/unlink', methods=['POST'])
@login_required
def unlink_account():
    """Removes the social provider link. Requires a password so the user can still log in."""
    user = current_user._get_current_object()
    if not user.has_linked_social_account():
        return jsonify({'message': 'No social account linked'}), 400
    if not user.can_unlink_social_account():
        return jsonify({
            'message': 'Password required',
            'error': 'Cannot unlink social account without a password set. Please set a password first.',
        }), 400

    provider = user.provider
    try:
        user.provider = None
        user.provider_id = None
        user.avatar = None
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error unlinking {provider} for user {user.id}: {e}", exc_info=True)
        return jsonify({'message': 'Failed to unlink account', 'error': 'An unexpected error occurred.'}), 500

    current_app.logger.info(f"User {user.id} unlinked their {provider} account.")
    return jsonify({'user': user.to_dict(), 'message': f'Successfully unlinked {provider.capitalize()} account'})
