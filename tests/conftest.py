from datetime import datetime
import pytest
from cryptography.fernet import Fernet
from app import create_app
from config import Config
from extensions import db as _db # Alias to avoid fixture name conflict
from models.user import User

class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:' # Use in-memory SQLite for tests
    SECRET_KEY = 'test-secret-key'
    # A valid URL-safe base64-encoded 32-byte key for password reset tokens.
    FERNET_KEY = Fernet.generate_key()
    FRONTEND_URL = 'http://localhost:3000'
    CORS_ORIGINS = ['http://localhost:3000']
    # Stripe is always mocked; these only need to be non-empty.
    STRIPE_SECRET_KEY = 'sk_test_dummy'
    STRIPE_PUBLISHABLE_KEY = 'pk_test_dummy'
    STRIPE_WEBHOOK_SECRET = 'whsec_test_dummy'
    # OAuth providers are always mocked too.
    GOOGLE_CLIENT_ID = 'google-client-id'
    GOOGLE_CLIENT_SECRET = 'google-client-secret'
    GITHUB_CLIENT_ID = 'github-client-id'
    GITHUB_CLIENT_SECRET = 'github-client-secret'
    FACEBOOK_CLIENT_ID = None # Left unconfigured on purpose.
    FACEBOOK_CLIENT_SECRET = None
    RESEND_API_KEY = None
    MAIL_FROM_ADDRESS = None
    ACCESS_TOKEN_EXPIRATION_MINUTES = None
    ITEMS_PER_PAGE = 15
    MAX_PER_PAGE = 100

@pytest.fixture(scope='function')
def app():
    """
    Function-scoped test Flask application created with TestConfig.
    """
    app_instance = create_app(config_class=TestConfig)
    return app_instance

@pytest.fixture(scope='function')
def app_context(app):
    """
    Function-scoped application context for unit tests of forms, models and utilities.
    API tests use `client` instead and must not hold a context open: Flask reuses a
    pushed context for test client requests, which would leak the logged-in user
    between requests.
    """
    with app.app_context():
        yield

@pytest.fixture(scope='function')
def db(app_context): # db fixture now correctly depends on app_context
    """
    Function-scoped database fixture.
    Creates all database tables before each test and drops them afterwards.
    """
    _db.create_all() # Create tables based on models
    yield _db          # Provide the database session/object to the test
    _db.session.remove() # Ensure session is closed
    _db.drop_all()     # Drop all tables to clean up

@pytest.fixture(scope='function')
def client(app):
    """
    Test client with a fresh schema. Each request pushes its own application context.
    """
    with app.app_context():
        _db.create_all()
    yield app.test_client()
    with app.app_context():
        _db.session.remove()
        _db.drop_all()

@pytest.fixture
def make_user(app, client):
    """
    Factory creating users directly in the database. Returns the new user's ID.
    Pass password=None for an account created through a social provider.
    """
    def _make_user(email='user@example.com', password='password123', name='Test User', **fields):
        with app.app_context():
            user = User(name=name, email=email, email_verified_at=datetime.utcnow(), **fields)
            if password:
                user.set_password(password)
            _db.session.add(user)
            _db.session.commit()
            return user.id
    return _make_user

@pytest.fixture
def user(make_user):
    """ID of the default test user (user@example.com / password123)."""
    return make_user()

@pytest.fixture
def headers_for(app):
    """Factory issuing an access token for a user ID and returning the Authorization header."""
    def _headers_for(user_id):
        with app.app_context():
            token = _db.session.get(User, user_id).create_token('auth_token')
            _db.session.commit()
        return {'Authorization': f'Bearer {token}'}
    return _headers_for

@pytest.fixture
def auth_headers(user, headers_for):
    return headers_for(user)
