from flask_sqlalchemy import SQLAlchemy # ORM for database interactions.
from flask_migrate import Migrate       # Alembic-backed schema migrations.
from flask_login import LoginManager    # Resolves the authenticated user for each request.
from flask_cors import CORS             # Cross-origin headers for the single-page frontend.
from authlib.integrations.flask_client import OAuth # OAuth client library for third-party identity providers.

# Initialize SQLAlchemy.
# Bound to the Flask app in the application factory (create_app in app.py) using db.init_app(app).
db = SQLAlchemy()

# Flask-Migrate, bound to both the app and the db instance in create_app.
migrate = Migrate()

# Initialize Flask-Login's LoginManager.
# The API never stores users in the session; create_app registers a request loader
# that resolves the user from the bearer token in the Authorization header.
login_manager = LoginManager()

# Flask-Cors instance. Allowed origins come from CORS_ORIGINS in the configuration.
cors = CORS()

# Initialize Authlib's OAuth client registry.
# Providers (Google, Facebook, GitHub) are registered in create_app via services.social.register_providers.
oauth = OAuth()
