"""
Email templates: storage, default seeding and rendering.
"""
import json
import os
import re

import yaml

from core.db import fetch_all, fetch_one, new_id, utcnow

DEFAULT_TEMPLATES_FILE = os.path.join(os.path.dirname(__file__), 'email_templates.yaml')
PLACEHOLDER_PATTERN = re.compile(r'\{\{(\w+)\}\}')


def load_default_templates(path=DEFAULT_TEMPLATES_FILE) -> list:
    with open(path, 'r', encoding='utf-8') as f:
        return yaml.safe_load(f) or []


def get_template(conn, slug):
    return fetch_one(conn, 'SELECT * FROM email_templates WHERE slug = ?', (slug,))


def list_templates(conn) -> list:
    return fetch_all(conn, 'SELECT * FROM email_templates ORDER BY name')


def upsert_template(conn, data: dict):
    variables = data.get('available_variables') or '[]'
    if not isinstance(variables, str):
        variables = json.dumps(variables)
    conn.execute(
        """
        INSERT INTO email_templates (id, slug, name, subject, greeting, body, button_text,
                                     footer, html_override, use_html_override,
                                     available_variables)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(slug) DO UPDATE SET
            name = excluded.name,
            subject = excluded.subject,
            greeting = excluded.greeting,
            body = excluded.body,
            button_text = excluded.button_text,
            footer = excluded.footer,
            html_override = excluded.html_override,
            use_html_override = excluded.use_html_override,
            available_variables = excluded.available_variables,
            updated_at = ?
        """,
        (
            new_id(),
            data['slug'],
            data.get('name') or data['slug'],
            data['subject'],
            data.get('greeting') or '',
            data.get('body') or '',
            data.get('button_text') or '',
            data.get('footer') or '',
            data.get('html_override') or '',
            1 if data.get('use_html_override') else 0,
            variables,
            utcnow(),
        ),
    )


def seed_default_templates(conn):
    """Insert any default template whose slug is not in the database yet."""
    for template in load_default_templates():
        if get_template(conn, template['slug']) is None:
            upsert_template(conn, template)


def render_template(template, variables: dict) -> str:
    """Replace ``{{name}}`` placeholders; unknown names are left untouched."""
    if not template:
        return ''
    return PLACEHOLDER_PATTERN.sub(
        lambda m: str(variables[m.group(1)]) if m.group(1) in variables else m.group(0),
        template,
    )


def assemble_html(greeting, body, button_text, button_url, footer) -> str:
    greeting_html = f'<h2>{greeting}</h2>' if greeting else ''
    body_html = '<p>' + body.replace('\n', '<br>') + '</p>' if body else ''
    button_html = ''
    if button_text and button_url:
        button_html = (
            '<p style="margin: 24px 0;">'
            f'<a href="{button_url}" style="background: #0d6efd; color: #fff; padding: 12px 24px; '
            'border-radius: 6px; text-decoration: none; display: inline-block;">'
            f'{button_text}</a></p>'
        )
    footer_html = f'<p style="color: #666; font-size: 14px;">{footer}</p>' if footer else ''
    return ('<div style="font-family: sans-serif; max-width: 480px; margin: 0 auto;">'
            f'{greeting_html}{body_html}{button_html}{footer_html}</div>')


def assemble_text(greeting, body, button_url, footer) -> str:
    return '\n\n'.join(part for part in (greeting, body, button_url, footer) if part)


def resolve_html(template: dict, button_url=None) -> str:
    if template.get('use_html_override') and template.get('html_override'):
        return template['html_override']
    return assemble_html(template.get('greeting'), template.get('body'),
                         template.get('button_text'), button_url, template.get('footer'))


def resolve_text(template: dict, button_url=None) -> str:
    if template.get('use_html_override') and template.get('html_override'):
        return re.sub(r'<[^>]+>', '', template['html_override'])
    return assemble_text(template.get('greeting'), template.get('body'), button_url,
                         template.get('footer'))


def render_email(template: dict, variables: dict, button_url=None) -> dict:
    """Subject, text and HTML bodies for a template with variables filled in."""
    return {
        'subject': render_template(template.get('subject'), variables),
        'text': render_template(resolve_text(template, button_url), variables),
        'html': render_template(resolve_html(template, button_url), variables),
    }
