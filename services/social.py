"""
Social sign-in through third-party OAuth 2.0 identity providers.

The API is consumed by a single-page frontend, so the flow is stateless:

1. The frontend asks the API for an authorization URL (`build_authorization_url`).
2. The provider redirects the browser to the frontend callback page with a `code`.
3. The frontend posts the code to the API, which exchanges it for an access token
   and reads the user's profile (`fetch_social_user`).

Provider clients are registered on the shared Authlib registry in `register_providers`.
"""
from collections import namedtuple

from authlib.integrations.base_client.errors import OAuthError
from flask import current_app
from requests.exceptions import RequestException

from extensions import oauth

SUPPORTED_PROVIDERS = ('google', 'facebook', 'github')

# Provider-independent view of the profile returned by an identity provider.
SocialUser = namedtuple('SocialUser', ['id', 'email', 'name', 'avatar'])


class SocialAuthError(Exception):
    """Raised when the provider rejects the code or its profile endpoint fails."""

    def __init__(self, message, status_code=400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def register_providers(app):
    """
    Registers every supported provider with the Authlib OAuth registry.

    Credentials are read from the app config. Providers without credentials are still
    registered; `is_configured` reports whether they can actually be used.
    """
    # Google: OpenID Connect, endpoints discovered from the metadata document.
    oauth.register(
        name='google',
        client_id=app.config.get('GOOGLE_CLIENT_ID'),
        client_secret=app.config.get('GOOGLE_CLIENT_SECRET'),
        server_metadata_url='https://accounts.google.com/.well-known/openid-configuration',
        client_kwargs={'scope': 'openid email profile'},
        overwrite=True,
    )

    # Facebook: plain OAuth 2.0 against a pinned Graph API version.
    graph_version = app.config.get('FACEBOOK_GRAPH_API_VERSION', 'v18.0')
    oauth.register(
        name='facebook',
        client_id=app.config.get('FACEBOOK_CLIENT_ID'),
        client_secret=app.config.get('FACEBOOK_CLIENT_SECRET'),
        authorize_url=f'https://www.facebook.com/{graph_version}/dialog/oauth',
        access_token_url=f'https://graph.facebook.com/{graph_version}/oauth/access_token',
        api_base_url=f'https://graph.facebook.com/{graph_version}/',
        client_kwargs={'scope': 'email public_profile'},
        overwrite=True,
    )

    # GitHub: OAuth 2.0; the token endpoint answers JSON when asked for it.
    oauth.register(
        name='github',
        client_id=app.config.get('GITHUB_CLIENT_ID'),
        client_secret=app.config.get('GITHUB_CLIENT_SECRET'),
        authorize_url='https://github.com/login/oauth/authorize',
        access_token_url='https://github.com/login/oauth/access_token',
        api_base_url='https://api.github.com/',
        client_kwargs={'scope': 'read:user user:email'},
        overwrite=True,
    )


def is_supported(provider):
    return provider in SUPPORTED_PROVIDERS


def unsupported_provider_message(provider):
    return f'Provider "{provider}" not supported. Supported providers: {", ".join(SUPPORTED_PROVIDERS)}'


def is_configured(provider):
    prefix = provider.upper()
    return bool(current_app.config.get(f'{prefix}_CLIENT_ID')) and bool(current_app.config.get(f'{prefix}_CLIENT_SECRET'))


def redirect_uri_for(provider):
    """The frontend callback URL registered with the provider."""
    configured = current_app.config.get(f'{provider.upper()}_REDIRECT_URI')
    return configured or f"{current_app.config['FRONTEND_URL']}/auth/callback/{provider}"


def build_authorization_url(provider, state=None):
    """
    Builds the URL the frontend should send the browser to.

    Args:
        provider (str): One of SUPPORTED_PROVIDERS.
        state (str, optional): Opaque value echoed back by the provider (e.g., 'link').

    Returns:
        str: The provider authorization URL.
    """
    client = oauth.create_client(provider)
    params = {}
    if provider == 'google':
        # Always show the account chooser, and ask for a refresh token.
        params.update(prompt='select_account', access_type='offline')
    if state:
        params['state'] = state
    result = client.create_authorization_url(redirect_uri_for(provider), **params)
    return result['url']


def fetch_social_user(provider, code):
    """
    Exchanges an authorization code for a token and reads the user's profile.

    Returns:
        SocialUser: The normalized profile. `email` may be None if the provider withheld it.
    Raises:
        SocialAuthError: If the exchange or the profile request fails.
    """
    client = oauth.create_client(provider)
    try:
        token = client.fetch_access_token(redirect_uri=redirect_uri_for(provider), code=code)
    except OAuthError as e:
        current_app.logger.warning(f"OAuthError during {provider} token exchange: {e.error} - {e.description}")
        raise SocialAuthError(f'Authentication failed with {provider.capitalize()}: {e.description or e.error}', 400) from e
    except RequestException as e:
        current_app.logger.error(f"Network error during {provider} token exchange: {e}", exc_info=True)
        raise SocialAuthError(f'Could not reach {provider.capitalize()}. Please try again.', 502) from e

    try:
        if provider == 'google':
            return _google_profile(client, token)
        if provider == 'facebook':
            return _facebook_profile(client, token)
        return _github_profile(client, token)
    except (OAuthError, RequestException, ValueError) as e:
        current_app.logger.error(f"{provider} OAuth: error fetching user info: {e}", exc_info=True)
        raise SocialAuthError(f'Failed to fetch user information from {provider.capitalize()}.', 502) from e


def _google_profile(client, token):
    # OpenID Connect userinfo endpoint: 'sub' is the stable user ID.
    info = client.userinfo(token=token)
    return SocialUser(
        id=str(info.get('sub')),
        email=info.get('email'),
        name=info.get('name'),
        avatar=info.get('picture'),
    )


def _facebook_profile(client, token):
    resp = client.get('me', params={'fields': 'id,name,email,picture.type(large)'}, token=token)
    resp.raise_for_status()
    info = resp.json()
    picture = (info.get('picture') or {}).get('data') or {}
    return SocialUser(
        id=str(info.get('id')),
        email=info.get('email'),
        name=info.get('name'),
        avatar=picture.get('url'),
    )


def _github_profile(client, token):
    resp = client.get('user', token=token)
    resp.raise_for_status()
    info = resp.json()
    email = info.get('email')
    if not email:
        # Private emails are only available from the emails endpoint.
        emails_resp = client.get('user/emails', token=token)
        emails_resp.raise_for_status()
        verified = [e for e in emails_resp.json() if e.get('verified')]
        primary = next((e for e in verified if e.get('primary')), verified[0] if verified else None)
        email = primary.get('email') if primary else None
    return SocialUser(
        id=str(info.get('id')),
        email=email,
        name=info.get('name') or info.get('login'),
        avatar=info.get('avatar_url'),
    )
