# Command-line entry point for portal maintenance tasks

import argparse
import os
import sys

from filelock import FileLock, Timeout

from core.admins import admin_exists, insert_admin
from core.db import connect, transaction
from core.errors import ImportValidationError
from core.igbo_xml import build_import_rows, import_igbo_xml, parse_people, summarize
from core.passwords import validate_password
from core.session import ROLE_SUPER_ADMIN


def default_database_path():
    script_dir = os.path.dirname(__file__)
    base_dir = os.path.dirname(script_dir)
    data_dir = os.environ.get('PORTAL_DATA_DIR', os.path.join(base_dir, 'data'))
    return os.environ.get('PORTAL_DATABASE_PATH', os.path.join(data_dir, 'portal.db'))


# Same lock file the web portal holds during XML and CSV imports
def import_lock(database_path):
    data_dir = os.path.dirname(os.path.abspath(database_path))
    return FileLock(os.path.join(data_dir, '.import.lock'), timeout=10)


def read_xml(file_path):
    with open(file_path, mode='r', encoding='utf-8-sig') as file:
        return file.read()


def cmd_init_db(args):
    conn = connect(args.database)
    conn.close()
    print(f"Database ready at {args.database}")
    return 0


def cmd_import_xml(args):
    try:
        xml_text = read_xml(args.file)
    except OSError as e:
        print(f"Error: cannot read {args.file}: {e}", file=sys.stderr)
        return 1

    try:
        if args.dry_run:
            summary = summarize(build_import_rows(parse_people(xml_text)))
        else:
            with import_lock(args.database):
                conn = connect(args.database)
                try:
                    summary = import_igbo_xml(conn, xml_text)
                finally:
                    conn.close()
    except ImportValidationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    except Timeout:
        print("Error: another import is in progress", file=sys.stderr)
        return 3

    prefix = "Would import" if args.dry_run else "Imported"
    print(f"{prefix} {summary['people']} people, {summary['teams']} teams, "
          f"{summary['doubles']} doubles pairs, {summary['scores']} score rows")
    return 0


def cmd_create_super_admin(args):
    error = validate_password(args.password)
    if error:
        print(f"Error: {error}", file=sys.stderr)
        return 1

    conn = connect(args.database)
    try:
        if admin_exists(conn, args.email, args.phone or ''):
            print(f"Error: an admin with {args.email} already exists", file=sys.stderr)
            return 1
        with transaction(conn):
            insert_admin(conn, args.first_name, args.last_name, args.email, args.phone,
                         args.password, ROLE_SUPER_ADMIN, must_change_password=False)
    finally:
        conn.close()
    print(f"Created super-admin {args.email}")
    return 0


def build_parser():
    parser = argparse.ArgumentParser(description='Tournament portal maintenance')
    parser.add_argument(
        '--database',
        default=default_database_path(),
        help='SQLite database file (default: $PORTAL_DATABASE_PATH or data/portal.db)'
    )
    subparsers = parser.add_subparsers(dest='command', required=True)

    init_db = subparsers.add_parser('init-db', help='Create the database schema')
    init_db.set_defaults(func=cmd_init_db)

    import_xml = subparsers.add_parser('import-xml', help='Import an IGBO registration export')
    import_xml.add_argument('file', help='Path to the XML export')
    import_xml.add_argument('--dry-run', action='store_true',
                            help='Parse and count records without writing')
    import_xml.set_defaults(func=cmd_import_xml)

    super_admin = subparsers.add_parser('create-super-admin', help='Create a super-admin account')
    super_admin.add_argument('--email', required=True)
    super_admin.add_argument('--password', required=True)
    super_admin.add_argument('--first-name', default='')
    super_admin.add_argument('--last-name', default='')
    super_admin.add_argument('--phone', default=None)
    super_admin.set_defaults(func=cmd_create_super_admin)
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
