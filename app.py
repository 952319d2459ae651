import logging # Log level for app.logger is taken from the configuration.
from datetime import datetime
from decimal import Decimal
import click # CLI arguments for the `flask seed` command.
import stripe # Stripe Python library for payment processing.
from flask import Flask, jsonify, g # The main Flask class.
from config import Config # Import the application's configuration class.
from extensions import db, migrate, login_manager, cors, oauth # Import initialized extensions.
from models.user import User # Import User model, primarily for the user_loader.
from models.access_token import PersonalAccessToken
from models.item import Item
from services.social import register_providers

# Application Factory Function
def create_app(config_class=Config):
    """
    Application factory for creating and configuring the Flask app.

    Args:
        config_class (type): Configuration object to load. Tests pass a subclass of Config.
    """
    app = Flask(__name__)

    # Load configuration from the given config object (defined in config.py by default).
    app.config.from_object(config_class)
    app.logger.setLevel(getattr(logging, app.config.get('LOG_LEVEL', 'INFO'), logging.INFO))

    # --- Initialize Stripe ---
    # Set the Stripe API secret key from the application configuration.
    # This is necessary for making server-side calls to the Stripe API.
    stripe.api_key = app.config['STRIPE_SECRET_KEY']
    if not stripe.api_key:
        app.logger.warning("STRIPE_SECRET_KEY is not set; payment endpoints will fail until it is configured.")

    # --- Initialize Flask Extensions ---
    db.init_app(app) # SQLAlchemy ORM.
    migrate.init_app(app, db) # `flask db ...` schema migrations.
    login_manager.init_app(app) # Resolves current_user from the bearer token (see load_user_from_request).
    # Only the API is exposed cross-origin, to the configured frontend origins.
    cors.init_app(app, resources={r'/api/*': {'origins': app.config['CORS_ORIGINS']}})

    # Initialize Authlib's OAuth client registry with the app and register the social login providers.
    oauth.init_app(app)
    register_providers(app)

    # --- Import and Register Blueprints ---
    from routes.main import main_bp # Root, health check and JSON error handlers.
    from routes.auth import auth_bp
    from routes.social import social_bp
    from routes.items import items_bp
    from routes.payments import payments_bp

    app.register_blueprint(main_bp)
    # All API routes live under /api/...
    app.register_blueprint(auth_bp, url_prefix='/api')
    app.register_blueprint(social_bp, url_prefix='/api')
    app.register_blueprint(items_bp, url_prefix='/api')
    app.register_blueprint(payments_bp, url_prefix='/api/payments')

    # --- Flask-Login Loaders ---
    @login_manager.user_loader
    def load_user(user_id):
        """Loads a user from the database given their ID."""
        return db.session.get(User, int(user_id))

    @login_manager.request_loader
    def load_user_from_request(request):
        """
        Authenticates the request from an `Authorization: Bearer <token>` header.

        The matched token is kept on `g.current_access_token` so logout and refresh
        can revoke exactly the token in use.
        """
        auth_header = request.headers.get('Authorization', '')
        if not auth_header.lower().startswith('bearer '):
            return None
        access_token = PersonalAccessToken.find_token(auth_header[7:].strip())
        if access_token is None:
            return None
        if access_token.is_expired():
            app.logger.info(f"Rejected expired access token {access_token.id} for user {access_token.user_id}.")
            return None

        access_token.last_used_at = datetime.utcnow()
        db.session.commit()
        g.current_access_token = access_token
        return access_token.user

    @login_manager.unauthorized_handler
    def unauthorized():
        # API clients get a JSON 401 instead of a redirect to a login page.
        return jsonify({
            'message': 'Unauthenticated.',
            'error': 'You must be logged in to access this resource.',
        }), 401

    # --- CLI Commands ---
    @app.cli.command('seed')
    @click.option('--email', default='test@example.com', help='Email of the demo user.')
    @click.option('--password', default='password', help='Password of the demo user.')
    def seed(email, password):
        """Creates a demo user with a few sample items."""
        user = User.query.filter_by(email=email.lower()).first()
        if user is None:
            user = User(name='Test User', email=email.lower(), email_verified_at=datetime.utcnow())
            user.set_password(password)
            db.session.add(user)
            db.session.flush()
            click.echo(f"Created user {user.email}.")
        else:
            click.echo(f"User {user.email} already exists.")

        samples = [
            ('Notebook', 'A5 dotted notebook, 120 pages.', Decimal('12.50')),
            ('Desk Lamp', 'LED desk lamp with adjustable brightness.', Decimal('39.99')),
            ('Coffee Beans', 'Single-origin beans, 1 kg bag.', Decimal('24.00')),
        ]
        for name, description, price in samples:
            if not Item.query.filter_by(user_id=user.id, name=name).first():
                db.session.add(Item(name=name, description=description, price=price, user_id=user.id))
        db.session.commit()
        click.echo(f"Seeded {user.items.count()} items for {user.email}.")

    return app # Return the configured Flask app instance.

# This block allows running the Flask development server directly using `python app.py`.
if __name__ == '__main__':
    app = create_app() # Create an app instance using the factory.
    app.run(debug=True)
