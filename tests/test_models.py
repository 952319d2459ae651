import hashlib
from datetime import datetime, timedelta
from decimal import Decimal
from models.user import User
from models.access_token import PersonalAccessToken
from models.item import Item
from models.payment import Payment, PaymentStatusEnum

def _user(db, email='model@example.com', password='password123', **fields):
    user = User(name='Model User', email=email, **fields)
    if password:
        user.set_password(password)
    db.session.add(user)
    db.session.commit()
    return user

def test_password_hashing(db):
    user = _user(db)
    assert user.password_hash != 'password123'
    assert user.check_password('password123') is True
    assert user.check_password('wrong') is False

def test_social_only_user_has_no_password(db):
    user = _user(db, password=None, provider='google', provider_id='123')
    assert user.has_password() is False
    assert user.check_password('anything') is False
    assert user.has_linked_social_account() is True
    # Unlinking would lock a social-only user out.
    assert user.can_unlink_social_account() is False

def test_can_unlink_with_password(db):
    user = _user(db, provider='github', provider_id='42')
    assert user.can_unlink_social_account() is True

def test_avatar_url_falls_back_to_gravatar(db):
    user = _user(db, email='Someone@Example.com')
    digest = hashlib.md5(b'someone@example.com').hexdigest()
    assert user.avatar_url == f'https://www.gravatar.com/avatar/{digest}?d=mp&s=80'

    user.avatar = 'https://cdn.example.com/me.png'
    assert user.avatar_url == 'https://cdn.example.com/me.png'

def test_user_to_dict_hides_secrets(db):
    data = _user(db, provider='google', provider_id='secret-id').to_dict()
    assert 'password_hash' not in data
    assert 'provider_id' not in data
    assert data['has_password'] is True
    assert data['provider'] == 'google'
    assert data['created_at'].endswith('Z')

# --- Personal access tokens ---

def test_create_token_and_find_it(db):
    user = _user(db)
    plain = user.create_token('auth_token')
    db.session.commit()

    token_id, secret = plain.split('|', 1)
    assert len(secret) == 40
    access_token = PersonalAccessToken.find_token(plain)
    assert access_token is not None
    assert access_token.id == int(token_id)
    assert access_token.user_id == user.id
    # Only the hash is stored.
    assert access_token.token != secret

    # The bare secret resolves too.
    assert PersonalAccessToken.find_token(secret).id == access_token.id

def test_find_token_rejects_wrong_secret(db):
    user = _user(db)
    plain = user.create_token()
    db.session.commit()
    token_id = plain.split('|', 1)[0]

    assert PersonalAccessToken.find_token(f'{token_id}|not-the-secret') is None
    assert PersonalAccessToken.find_token('abc|whatever') is None
    assert PersonalAccessToken.find_token('') is None

def test_token_expiry(db, app):
    app.config['ACCESS_TOKEN_EXPIRATION_MINUTES'] = 30
    user = _user(db)
    access_token = PersonalAccessToken.find_token(user.create_token())
    assert access_token.expires_at is not None
    assert access_token.is_expired() is False
    assert access_token.is_expired(now=datetime.utcnow() + timedelta(minutes=31)) is True

def test_tokens_never_expire_by_default(db):
    access_token = PersonalAccessToken.find_token(_user(db).create_token())
    assert access_token.expires_at is None
    assert access_token.is_expired() is False

# --- Items and payments ---

def test_item_price_serialized_with_two_decimals(db):
    user = _user(db)
    item = Item(name='Lamp', description='Desk lamp', price=Decimal('19.9'), user_id=user.id)
    free = Item(name='Sticker', description='Free sticker', user_id=user.id)
    db.session.add_all([item, free])
    db.session.commit()
    assert item.to_dict()['price'] == '19.90'
    assert free.to_dict()['price'] is None

def test_payment_status_from_stripe():
    assert PaymentStatusEnum.from_stripe_status('succeeded') == PaymentStatusEnum.SUCCEEDED
    assert PaymentStatusEnum.from_stripe_status('canceled') == PaymentStatusEnum.CANCELED
    for status in ('processing', 'requires_payment_method', 'requires_confirmation', 'requires_action', 'requires_capture'):
        assert PaymentStatusEnum.from_stripe_status(status) == PaymentStatusEnum.PENDING
    assert PaymentStatusEnum.from_stripe_status('something_new') is None
    assert PaymentStatusEnum.from_stripe_status(None) is None

def test_payment_apply_status_sets_payment_date(db):
    user = _user(db)
    payment = Payment(user_id=user.id, stripe_payment_intent_id='pi_model', amount=1000,
                      payment_metadata={'order': '7'})
    db.session.add(payment)
    db.session.commit()
    assert payment.status == PaymentStatusEnum.PENDING
    assert payment.payment_date is None

    payment.apply_status(PaymentStatusEnum.SUCCEEDED)
    db.session.commit()
    assert payment.payment_date is not None

    data = payment.to_dict()
    assert data['status'] == 'succeeded'
    assert data['currency'] == 'usd'
    assert data['metadata'] == {'order': '7'}

def test_payment_succeeded_is_final(db):
    user = _user(db)
    payment = Payment(user_id=user.id, stripe_payment_intent_id='pi_final', amount=1000)
    db.session.add(payment)
    db.session.commit()

    assert payment.apply_status(PaymentStatusEnum.FAILED) is True
    assert payment.payment_date is None
    assert payment.apply_status(PaymentStatusEnum.SUCCEEDED) is True
    paid_at = payment.payment_date

    assert payment.apply_status(PaymentStatusEnum.CANCELED) is False
    assert payment.status == PaymentStatusEnum.SUCCEEDED
    assert payment.payment_date == paid_at

def test_deleting_user_removes_their_rows(db):
    user = _user(db)
    user.create_token()
    db.session.add(Item(name='Lamp', description='Desk lamp', user_id=user.id))
    db.session.commit()

    db.session.delete(user)
    db.session.commit()
    assert PersonalAccessToken.query.count() == 0
    assert Item.query.count() == 0
