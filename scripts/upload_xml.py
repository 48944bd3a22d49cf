#!/usr/bin/env python3
"""
IGBO Registration Upload Tool

Logs in to a running portal as an admin and uploads an IGBO XML export
through the import API.

Usage:
    python scripts/upload_xml.py --url https://portal.example.org --email admin@example.org registrations.xml
    PORTAL_ADMIN_PASSWORD=... python scripts/upload_xml.py --email admin@example.org registrations.xml

Exit codes:
    0: Success
    1: File missing or not an .xml file
    2: Login failed
    3: Upload rejected by the portal
"""
import argparse
import getpass
import os
import sys

import requests

DEFAULT_URL = 'http://localhost:5000'
TIMEOUT = 60


def login(session: requests.Session, base_url: str, email: str, password: str) -> bool:
    """Log in and keep the admin cookie on ``session``."""
    try:
        response = session.post(
            f'{base_url}/api/portal/admin/login',
            json={'email': email, 'password': password},
            timeout=TIMEOUT,
        )
    except requests.RequestException as e:
        print(f"Error: cannot reach {base_url}: {e}", file=sys.stderr)
        return False

    if response.status_code != 200:
        print(f"Error: login failed ({response.status_code}): {_error_text(response)}",
              file=sys.stderr)
        return False
    if response.json().get('needsReset'):
        print("Error: this admin must reset their password before uploading.", file=sys.stderr)
        return False
    return True


def upload(session: requests.Session, base_url: str, xml_path: str):
    """Upload the export. Returns the import summary, or None on failure."""
    with open(xml_path, 'rb') as f:
        try:
            response = session.post(
                f'{base_url}/api/portal/admin/import-xml',
                files={'xml': (os.path.basename(xml_path), f, 'application/xml')},
                timeout=TIMEOUT,
            )
        except requests.RequestException as e:
            print(f"Error: upload failed: {e}", file=sys.stderr)
            return None

    if response.status_code != 200:
        print(f"Error: upload rejected ({response.status_code}): {_error_text(response)}",
              file=sys.stderr)
        return None
    return response.json().get('summary', {})


def _error_text(response) -> str:
    try:
        return response.json().get('error', response.text)
    except ValueError:
        return response.text


def main():
    parser = argparse.ArgumentParser(
        description='Upload an IGBO XML registration export to the portal'
    )
    parser.add_argument(
        'file',
        help='Path to the XML export'
    )
    parser.add_argument(
        '--url',
        default=os.environ.get('PORTAL_BASE_URL', DEFAULT_URL),
        help=f'Portal base URL (default: $PORTAL_BASE_URL or {DEFAULT_URL})'
    )
    parser.add_argument(
        '--email',
        required=True,
        help='Admin email address'
    )
    parser.add_argument(
        '--password',
        help='Admin password (default: $PORTAL_ADMIN_PASSWORD, else prompt)'
    )

    args = parser.parse_args()

    if not os.path.isfile(args.file) or not args.file.lower().endswith('.xml'):
        print(f"Error: {args.file} is not an .xml file", file=sys.stderr)
        return 1

    password = args.password or os.environ.get('PORTAL_ADMIN_PASSWORD') or getpass.getpass()
    base_url = args.url.rstrip('/')

    with requests.Session() as session:
        print(f"Logging in to {base_url} as {args.email}...")
        if not login(session, base_url, args.email, password):
            return 2

        print(f"Uploading {args.file}...")
        summary = upload(session, base_url, args.file)
        if summary is None:
            return 3

    print("\nImport completed successfully!")
    for key in ('people', 'teams', 'doubles', 'scores'):
        print(f"  {key}: {summary.get(key, 0)}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
