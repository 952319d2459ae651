import uuid
import requests # HTTP client used to call the Resend email API.
from flask import current_app

RESEND_API_URL = 'https://api.resend.com/emails'

def send_email(to_email, subject, text):
    """
    Sends a plain-text email through the Resend HTTP API.

    Args:
        to_email (str): Recipient address.
        subject (str): Subject line.
        text (str): Plain-text body.

    Returns:
        bool: True if Resend accepted the message. False when mail is not configured
              or the API call failed (the failure is logged).
    """
    api_key = current_app.config.get('RESEND_API_KEY')
    sender = current_app.config.get('MAIL_FROM_ADDRESS')
    if not api_key or not sender:
        current_app.logger.warning(f"Email to {to_email} skipped: RESEND_API_KEY/MAIL_FROM_ADDRESS not configured.")
        return False

    payload = {
        'from': sender,
        'to': [to_email],
        'subject': subject,
        'text': text,
        # Stops mail clients from threading separate resets into one conversation.
        'headers': {'X-Entity-Ref-ID': uuid.uuid4().hex},
    }
    try:
        response = requests.post(
            RESEND_API_URL,
            json=payload,
            headers={'Authorization': f'Bearer {api_key}', 'Accept': 'application/json'},
            timeout=15,
        )
        response.raise_for_status()
    except requests.HTTPError as e:
        current_app.logger.error(f"Resend email to {to_email} failed (HTTP {e.response.status_code}): {e.response.text}")
        return False
    except requests.RequestException as e:
        current_app.logger.error(f"Resend email to {to_email} failed (network error): {e}")
        return False

    current_app.logger.info(f"Email '{subject}' sent to {to_email}.")
    return True

def send_password_reset_email(user, reset_url):
    """Emails `user` a link to the frontend password reset page."""
    ttl_minutes = current_app.config.get('PASSWORD_RESET_TOKEN_TTL', 3600) // 60
    text = (
        f"Hello {user.name},\n\n"
        f"We received a request to reset the password for your account.\n"
        f"Reset it here: {reset_url}\n\n"
        f"This link expires in {ttl_minutes} minutes. If you did not request a reset, you can ignore this email."
    )
    return send_email(user.email, 'Reset your password', text)
