"""Transactional email: templates and delivery through the Resend HTTP API."""
from datetime import datetime
import logging

import requests
from flask import current_app
from markupsafe import escape

logger = logging.getLogger(__name__)

RESEND_URL = 'https://api.resend.com/emails'

MONTHS = {
    'en': ['January', 'February', 'March', 'April', 'May', 'June', 'July',
           'August', 'September', 'October', 'November', 'December'],
    'da': ['januar', 'februar', 'marts', 'april', 'maj', 'juni', 'juli',
           'august', 'september', 'oktober', 'november', 'december'],
}

BASE_STYLES = """
  body { font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Arial, sans-serif;
         background-color: #FAFAF8; color: #000000; margin: 0; padding: 0; }
  .container { max-width: 600px; margin: 0 auto; padding: 40px 20px; }
  .card { padding: 32px; border: 3px solid #000000; box-shadow: 6px 6px 0px 0px #000000; }
  h1 { font-size: 24px; margin: 0 0 16px 0; text-align: center; }
  p { font-size: 16px; line-height: 1.6; margin: 0 0 16px 0; }
  .highlight { color: #F97316; font-weight: 700; }
  .button { display: inline-block; background-color: #F97316; color: #000000 !important;
            text-decoration: none; padding: 14px 28px; font-weight: 700; border: 3px solid #000000; }
  .button-container { text-align: center; margin: 24px 0; }
  .expiry-note { background-color: #FEF3C7; border-left: 6px solid #F97316; padding: 12px 16px; }
  .footer { text-align: center; margin-top: 32px; color: #666666; font-size: 14px; }
"""


class EmailError(Exception):
    pass


def app_name(language: str) -> str:
    return 'Prepperhjælper' if language == 'da' else 'Prepper Helper'


def _app_url() -> str:
    return (current_app.config['PREPPER_CONFIG'].get('app_url') or '').rstrip('/')


def _format_date(value: datetime, language: str) -> str:
    month = MONTHS.get(language, MONTHS['en'])[value.month - 1]
    if language == 'da':
        return f"{value.day}. {month} {value.year}"
    return f"{month} {value.day}, {value.year}"


def _layout(content: str, language: str) -> str:
    name = app_name(language)
    url = _app_url()
    footer = f"Denne email blev sendt af {name}" if language == 'da' else f"This email was sent by {name}"
    return f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><meta name="viewport" content="width=device-width, initial-scale=1.0">
<style>{BASE_STYLES}</style></head>
<body>
  <div class="container">
    <div class="card">{content}</div>
    <div class="footer"><p>{footer}</p><p><a href="{url}">{url}</a></p></div>
  </div>
</body>
</html>
"""


def invitation_email(stash_name, inviter_name, inviter_email, invitation_id, expires_at, language='en'):
    name = app_name(language)
    accept_url = f"{_app_url()}/accept-invitation?id={invitation_id}"
    expiry = _format_date(expires_at, language)
    safe_stash, safe_inviter, safe_email = escape(stash_name), escape(inviter_name), escape(inviter_email)
    if language == 'da':
        subject = f'Du er blevet inviteret til "{stash_name}" på {name}'
        body = f"""
      <h1>Du er inviteret!</h1>
      <p><span class="highlight">{safe_inviter}</span> ({safe_email}) har inviteret dig til at deltage i deres forråd <span class="highlight">"{safe_stash}"</span> på {name}.</p>
      <p>Som medlem kan du se, tilføje og administrere varer i dette delte forråd.</p>
      <div class="button-container"><a href="{accept_url}" class="button">Accepter invitation</a></div>
      <div class="expiry-note"><p>Denne invitation udløber den {expiry}</p></div>
      <p>Hvis du ikke forventede denne invitation, kan du ignorere denne email.</p>"""
    else:
        subject = f'You\'ve been invited to "{stash_name}" on {name}'
        body = f"""
      <h1>You're Invited!</h1>
      <p><span class="highlight">{safe_inviter}</span> ({safe_email}) has invited you to join their stash <span class="highlight">"{safe_stash}"</span> on {name}.</p>
      <p>As a member, you'll be able to view, add, and manage items in this shared stash.</p>
      <div class="button-container"><a href="{accept_url}" class="button">Accept Invitation</a></div>
      <div class="expiry-note"><p>This invitation expires on {expiry}</p></div>
      <p>If you weren't expecting this invitation, you can safely ignore this email.</p>"""
    return subject, _layout(body, language)


def password_reset_email(user_name, token, expires_at, language='en'):
    name = app_name(language)
    reset_url = f"{_app_url()}/reset-password?token={token}"
    at = expires_at.strftime('%H:%M')
    safe_user = escape(user_name)
    if language == 'da':
        subject = f"Nulstil din adgangskode - {name}"
        body = f"""
      <h1>Nulstil adgangskode</h1>
      <p>Hej <span class="highlight">{safe_user}</span>,</p>
      <p>Vi modtog en anmodning om at nulstille adgangskoden til din {name}-konto.</p>
      <div class="button-container"><a href="{reset_url}" class="button">Nulstil adgangskode</a></div>
      <div class="expiry-note"><p>Dette link udløber kl. {at} UTC (om 1 time)</p></div>
      <p>Hvis du ikke anmodede om denne nulstilling, kan du ignorere denne email.</p>"""
    else:
        subject = f"Reset your password - {name}"
        body = f"""
      <h1>Reset Password</h1>
      <p>Hi <span class="highlight">{safe_user}</span>,</p>
      <p>We received a request to reset the password for your {name} account.</p>
      <div class="button-container"><a href="{reset_url}" class="button">Reset Password</a></div>
      <div class="expiry-note"><p>This link expires at {at} UTC (in 1 hour)</p></div>
      <p>If you didn't request this reset, you can safely ignore this email.</p>"""
    return subject, _layout(body, language)


def welcome_email(user_name, language='en'):
    name = app_name(language)
    safe_user = escape(user_name)
    if language == 'da':
        subject = f"Velkommen til {name}!"
        body = f"""
      <h1>Velkommen!</h1>
      <p>Hej <span class="highlight">{safe_user}</span>,</p>
      <p>Tak fordi du tilmeldte dig {name}! Din konto er nu klar til brug.</p>
      <div class="button-container"><a href="{_app_url()}" class="button">Kom i gang</a></div>"""
    else:
        subject = f"Welcome to {name}!"
        body = f"""
      <h1>Welcome!</h1>
      <p>Hi <span class="highlight">{safe_user}</span>,</p>
      <p>Thank you for signing up for {name}! Your account is now ready to use.</p>
      <div class="button-container"><a href="{_app_url()}" class="button">Get Started</a></div>"""
    return subject, _layout(body, language)


def send_email(to: str, subject: str, html: str):
    cfg = current_app.config['PREPPER_CONFIG'].get('email') or {}
    api_key = cfg.get('api_key')
    if not api_key:
        raise EmailError('Email delivery is not configured')
    try:
        response = requests.post(
            RESEND_URL,
            headers={'Authorization': f'Bearer {api_key}'},
            json={'from': cfg.get('from_address'), 'to': [to], 'subject': subject, 'html': html},
            timeout=10,
        )
        response.raise_for_status()
    except requests.RequestException as e:
        raise EmailError(f"Sending to {to} failed: {e}") from e
    logger.info("Sent '%s' to %s", subject, to)
