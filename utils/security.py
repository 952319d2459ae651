import hashlib
import json
from cryptography.fernet import Fernet, InvalidToken # Symmetric, timestamped encryption.
from flask import current_app # To access application configuration (e.g., FERNET_KEY).

def get_fernet():
    """
    Initializes and returns a Fernet instance for encryption/decryption.

    It retrieves the Fernet key from the application's configuration.
    The FERNET_KEY must be a URL-safe base64-encoded 32-byte key.

    Raises:
        ValueError: If FERNET_KEY is not configured in the application.

    Returns:
        cryptography.fernet.Fernet: An initialized Fernet cipher suite instance.
    """
    key = current_app.config.get('FERNET_KEY')
    if not key:
        current_app.logger.critical("FERNET_KEY is not configured in the application. Password reset tokens cannot be issued.")
        raise ValueError("FERNET_KEY not configured properly. Please set it in your application configuration.")
    return Fernet(key)

def encrypt_token(token):
    """
    Encrypts a plain-text string using Fernet symmetric encryption.

    Args:
        token (str or None): The plain-text value to encrypt. If None, returns None.

    Returns:
        str or None: The encrypted token, encoded as a UTF-8 string.
    """
    if token is None:
        return None
    return get_fernet().encrypt(token.encode('utf-8')).decode('utf-8')

def decrypt_token(encrypted_token, ttl=None):
    """
    Decrypts a Fernet token back to its plain-text form.

    Args:
        encrypted_token (str or None): The encrypted token. If None, returns None.
        ttl (int, optional): Maximum token age in seconds. Older tokens are rejected.

    Returns:
        str or None: The decrypted plain-text value.
    Raises:
        cryptography.fernet.InvalidToken: If the token is malformed, was encrypted with
                                          another key, or is older than `ttl`.
    """
    if encrypted_token is None:
        return None
    return get_fernet().decrypt(encrypted_token.encode('utf-8'), ttl=ttl).decode('utf-8')

def hash_access_token(secret):
    """SHA-256 hex digest of an API access token secret, as stored in personal_access_tokens.token."""
    return hashlib.sha256(secret.encode('utf-8')).hexdigest()

def _password_fingerprint(user):
    # Changes whenever the password changes, which invalidates outstanding reset tokens.
    return hashlib.sha256((user.password_hash or '').encode('utf-8')).hexdigest()[:16]

def generate_password_reset_token(user):
    """
    Issues a time-limited password reset token for `user`.

    The token is a Fernet-encrypted JSON payload carrying the user ID, email and a
    fingerprint of the current password hash. Fernet embeds the issue time, which
    `verify_password_reset_token` checks against PASSWORD_RESET_TOKEN_TTL.
    """
    payload = json.dumps({
        'uid': user.id,
        'email': user.email,
        'pwd': _password_fingerprint(user),
    })
    return encrypt_token(payload)

def verify_password_reset_token(token, user):
    """
    Checks that `token` was issued for `user` and is still valid.

    Returns:
        bool: False for expired, tampered or already-used tokens, or tokens issued to another user.
    """
    if not token or user is None:
        return False
    ttl = current_app.config.get('PASSWORD_RESET_TOKEN_TTL', 3600)
    try:
        payload = json.loads(decrypt_token(token, ttl=ttl))
    except (InvalidToken, ValueError, TypeError):
        return False
    if not isinstance(payload, dict):
        return False
    return (
        payload.get('uid') == user.id
        and payload.get('email') == user.email
        and payload.get('pwd') == _password_fingerprint(user)
    )
