from datetime import datetime
from flask import Blueprint, jsonify, current_app
from extensions import db
from utils.helpers import isoformat

main_bp = Blueprint('main', __name__)

@main_bp.route('/')
def index():
    """Liveness banner for the API root."""
    return jsonify({'message': 'API is running', 'timestamp': isoformat(datetime.utcnow())})

@main_bp.route('/health')
def health():
    return jsonify({'status': 'ok'})

# Browsers and stale links that land on /login get pointed at the token endpoint instead of a page.
@main_bp.route('/login')
def login_hint():
    return jsonify({
        'message': 'Please authenticate via the API endpoints',
        'login_url': '/api/login',
    }), 401

# --- Application-wide JSON error handlers ---
# Registered with app_errorhandler so they apply to every blueprint, not just this one.

@main_bp.app_errorhandler(404)
def not_found(error):
    return jsonify({'message': 'API endpoint not found. Check /api/ routes.'}), 404

@main_bp.app_errorhandler(405)
def method_not_allowed(error):
    return jsonify({'message': 'Method not allowed.'}), 405

@main_bp.app_errorhandler(500)
def internal_error(error):
    # Leave the session usable for the next request after a failed transaction.
    db.session.rollback()
    current_app.logger.error(f"Unhandled server error: {error}", exc_info=True)
    return jsonify({'message': 'Server error', 'error': 'An unexpected error occurred. Please try again later.'}), 500
