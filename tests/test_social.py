import pytest
from extensions import db
from models.user import User
from services.social import SocialUser, SocialAuthError, unsupported_provider_message

GOOGLE_PROFILE = SocialUser(id='g-123', email='Social@Example.com', name='Social Person', avatar='https://lh3.example.com/a.png')

@pytest.fixture
def mock_fetch(mocker):
    return mocker.patch('routes.social.fetch_social_user', return_value=GOOGLE_PROFILE)

def test_auth_url(client, mocker):
    build_mock = mocker.patch('routes.social.build_authorization_url', return_value='https://accounts.google.com/o/oauth2/auth?x=1')
    response = client.get('/api/auth/google/url')
    assert response.status_code == 200
    assert response.get_json() == {
        'url': 'https://accounts.google.com/o/oauth2/auth?x=1',
        'message': 'Social auth URL generated successfully',
    }
    build_mock.assert_called_once_with('google')

def test_auth_url_unsupported_provider(client):
    response = client.get('/api/auth/twitter/url')
    assert response.status_code == 400
    assert response.get_json() == {
        'message': 'Invalid provider',
        'error': 'Provider "twitter" not supported. Supported providers: google, facebook, github',
    }
    assert unsupported_provider_message('twitter') == response.get_json()['error']

def test_auth_url_provider_not_configured(client):
    # Facebook credentials are left empty in TestConfig.
    response = client.get('/api/auth/facebook/url')
    assert response.status_code == 500
    assert response.get_json()['message'] == 'OAuth configuration missing'

def test_callback_requires_code(client, mock_fetch):
    response = client.post('/api/auth/google/callback', json={})
    assert response.status_code == 400
    assert response.get_json()['message'] == 'Authorization code is required'
    mock_fetch.assert_not_called()

def test_callback_creates_new_user(client, app, mock_fetch):
    response = client.post('/api/auth/google/callback', json={'code': 'auth-code'})
    assert response.status_code == 200
    body = response.get_json()
    assert body['message'] == 'Successfully authenticated with Google'
    assert body['user']['email'] == 'social@example.com'
    assert body['user']['provider'] == 'google'
    assert body['user']['has_password'] is False
    assert body['user']['avatar_url'] == GOOGLE_PROFILE.avatar
    assert body['token']
    mock_fetch.assert_called_once_with('google', 'auth-code')

    with app.app_context():
        user = User.query.filter_by(email='social@example.com').one()
        assert user.provider_id == 'g-123'
        assert user.email_verified_at is not None

def test_callback_links_existing_email_account(client, app, make_user, mock_fetch):
    user_id = make_user(email='social@example.com')
    response = client.post('/api/auth/google/callback', json={'code': 'auth-code'})
    assert response.status_code == 200
    assert response.get_json()['user']['id'] == user_id

    with app.app_context():
        user = db.session.get(User, user_id)
        assert user.provider == 'google'
        assert user.provider_id == 'g-123'
        assert user.has_password() # The local password is kept.
        assert User.query.count() == 1

def test_callback_finds_user_by_provider_id(client, app, make_user, mock_fetch):
    # The email at the provider changed since the account was linked.
    user_id = make_user(email='old-address@example.com', password=None, provider='google', provider_id='g-123')
    response = client.post('/api/auth/google/callback', json={'code': 'auth-code'})
    assert response.status_code == 200
    assert response.get_json()['user']['id'] == user_id
    with app.app_context():
        assert User.query.count() == 1

def test_callback_without_email(client, mocker):
    mocker.patch('routes.social.fetch_social_user', return_value=SocialUser(id='gh-1', email=None, name='octo', avatar=None))
    response = client.post('/api/auth/github/callback', json={'code': 'auth-code'})
    assert response.status_code == 400
    assert 'Email not provided by Github' in response.get_json()['error']

def test_callback_provider_error(client, mocker):
    mocker.patch('routes.social.fetch_social_user', side_effect=SocialAuthError('Authentication failed with Google: invalid_grant', 400))
    response = client.post('/api/auth/google/callback', json={'code': 'expired-code'})
    assert response.status_code == 400
    assert response.get_json() == {
        'message': 'Authentication failed',
        'error': 'Authentication failed with Google: invalid_grant',
    }

# --- Linking ---

def test_link_url(client, auth_headers, mocker):
    build_mock = mocker.patch('routes.social.build_authorization_url', return_value='https://github.com/login/oauth/authorize?x=1')
    response = client.get('/api/auth/github/link', headers=auth_headers)
    assert response.status_code == 200
    assert response.get_json()['message'] == 'Redirect to Github to link account'
    build_mock.assert_called_once_with('github', state='link')

def test_link_requires_authentication(client):
    assert client.post('/api/auth/google/link', json={'code': 'x'}).status_code == 401

def test_link_account(client, auth_headers, mock_fetch):
    response = client.post('/api/auth/google/link', json={'code': 'auth-code'}, headers=auth_headers)
    assert response.status_code == 200
    body = response.get_json()
    assert body['message'] == 'Successfully linked Google account'
    assert body['user']['provider'] == 'google'

def test_link_when_already_linked(client, make_user, headers_for, mock_fetch):
    user_id = make_user(email='linked@example.com', provider='github', provider_id='gh-9')
    response = client.post('/api/auth/google/link', json={'code': 'auth-code'}, headers=headers_for(user_id))
    assert response.status_code == 400
    assert response.get_json()['error'] == 'Account already linked to Github'
    mock_fetch.assert_not_called()

def test_link_account_owned_by_another_user(client, make_user, auth_headers, mock_fetch):
    make_user(email='owner@example.com', provider='google', provider_id='g-123')
    response = client.post('/api/auth/google/link', json={'code': 'auth-code'}, headers=auth_headers)
    assert response.status_code == 400
    assert response.get_json()['error'] == 'This Google account is already linked to another user'

# --- Unlinking ---

def test_unlink_account(client, app, make_user, headers_for):
    user_id = make_user(email='linked@example.com', provider='google', provider_id='g-5', avatar='https://a.example.com/x.png')
    response = client.post('/api/auth/unlink', headers=headers_for(user_id))
    assert response.status_code == 200
    body = response.get_json()
    assert body['message'] == 'Successfully unlinked Google account'
    assert body['user']['provider'] is None
    assert body['user']['avatar'] is None
    with app.app_context():
        assert db.session.get(User, user_id).provider_id is None

def test_unlink_without_linked_account(client, auth_headers):
    response = client.post('/api/auth/unlink', headers=auth_headers)
    assert response.status_code == 400
    assert response.get_json() == {'message': 'No social account linked'}

def test_unlink_without_password(client, make_user, headers_for):
    user_id = make_user(email='social@example.com', password=None, provider='google', provider_id='g-5')
    response = client.post('/api/auth/unlink', headers=headers_for(user_id))
    assert response.status_code == 400
    assert 'without a password' in response.get_json()['error']
