"""
Outgoing mail over SMTP.

When SMTP is not configured the message is logged instead of sent, so local
installs work without a mail server.
"""
import logging
import os
import smtplib
from email.message import EmailMessage

from core.email_templates import get_template, render_email, seed_default_templates

logger = logging.getLogger(__name__)

DEFAULT_SENDER = 'Golden Gate Classic <noreply@goldengateclassic.org>'


def smtp_settings() -> dict:
    return {
        'host': os.environ.get('SMTP_HOST'),
        'port': int(os.environ.get('SMTP_PORT') or 587),
        'user': os.environ.get('SMTP_USER'),
        'password': os.environ.get('SMTP_PASS'),
        'sender': os.environ.get('SMTP_FROM') or DEFAULT_SENDER,
    }


def smtp_configured(settings=None) -> bool:
    settings = settings or smtp_settings()
    return bool(settings['host'] and settings['user'] and settings['password'])


def deliver(to, subject, text, html, settings=None):
    settings = settings or smtp_settings()
    message = EmailMessage()
    message['From'] = settings['sender']
    message['To'] = to
    message['Subject'] = subject
    message.set_content(text)
    message.add_alternative(html, subtype='html')

    if settings['port'] == 465:
        server = smtplib.SMTP_SSL(settings['host'], settings['port'], timeout=30)
    else:
        server = smtplib.SMTP(settings['host'], settings['port'], timeout=30)
    with server:
        if settings['port'] != 465:
            server.starttls()
        server.login(settings['user'], settings['password'])
        server.send_message(message)


def send_templated_email(conn, to, slug, variables, button_url=None):
    """Render the ``slug`` template and send it. Returns True when handed to SMTP."""
    seed_default_templates(conn)
    template = get_template(conn, slug)
    if template is None:
        logger.warning(f'No email template found for slug "{slug}"; skipping send.')
        return False

    rendered = render_email(template, variables, button_url)
    settings = smtp_settings()
    if not smtp_configured(settings):
        logger.info(f'No SMTP configured; would send "{slug}" to {to} '
                    f'(subject: {rendered["subject"]})')
        return False

    deliver(to, rendered['subject'], rendered['text'], rendered['html'], settings)
    logger.info(f'Sent "{slug}" email to {to}')
    return True
