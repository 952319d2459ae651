from functools import wraps
from flask import jsonify, current_app
from services.social import is_supported, unsupported_provider_message

def provider_required(f):
    """
    Decorator for routes with a `<provider>` URL segment.

    Rejects providers outside services.social.SUPPORTED_PROVIDERS with a 400
    before the view runs.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        provider = kwargs.get('provider')
        if not is_supported(provider):
            current_app.logger.warning(f"Rejected request for unsupported OAuth provider '{provider}'.")
            return jsonify({
                'message': 'Invalid provider',
                'error': unsupported_provider_message(provider),
            }), 400
        return f(*args, **kwargs)
    return decorated_function
