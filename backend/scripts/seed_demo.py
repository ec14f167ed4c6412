#!/usr/bin/env python
"""Idempotent seed script for demo principals, role records and PCS entries.

One user is created for every principal listed in the identity fallback
fixture; resolving it creates the Role Record and, for non-Admin roles, the
PCS entry from the role template.

Usage:
    python backend/scripts/seed_demo.py            # seed normally
    python backend/scripts/seed_demo.py --show     # print user -> role -> page count (after seeding)
    python backend/scripts/seed_demo.py --dry-run  # report what would be created, change nothing
"""
from __future__ import annotations
import os, sys, argparse, textwrap
from sqlalchemy import select, text
from sqlalchemy.exc import OperationalError

# Allow running from repo root
sys.path.append(os.path.abspath('backend'))

from opsgate import create_app, get_db  # type: ignore
from opsgate.models.authz import Base, User
from opsgate.services.identity import FallbackTable, IdentityResolver, Principal
from opsgate.services.pcs import PermissionStore


def planned_users(table: FallbackTable):
    """(email, name, role) for every e-mail principal in the fixture, sorted by email."""
    out = []
    for role, entry in table.entries.items():
        for ident in entry.principals:
            if '@' in ident:
                out.append((ident.lower(), entry.name or ident.split('@')[0], role))
    return sorted(out)


def ensure_users(session, table: FallbackTable, password: str, dry_run: bool = False):
    created = []
    for email, name, role in planned_users(table):
        if session.execute(select(User).where(User.email == email)).scalar_one_or_none():
            continue
        created.append((email, role.value))
        if dry_run:
            continue
        user = User(name=name, email=email)
        user.set_password(password)
        session.add(user)
    if not dry_run:
        session.commit()
    return created


def resolve_all(session, resolver: IdentityResolver):
    for user in session.execute(select(User).order_by(User.id)).scalars().all():
        resolver.resolve(Principal(user.id, user.email, user.name))


def print_summary(session):
    rows = PermissionStore(session).matrix()
    if not rows:
        print('[INFO] No users present.')
        return
    email_w = max(len(r['email']) for r in rows)
    print(f"{'Email'.ljust(email_w)} | {'Role'.ljust(28)} | Pages")
    print('-' * (email_w + 40))
    for r in rows:
        print(f"{r['email'].ljust(email_w)} | {(r['role'] or '-').ljust(28)} | {len(r['effective'])}")


def parse_args():
    p = argparse.ArgumentParser(
        description='Seed demo users, role records and PCS entries',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""Examples:\n  seed normally: seed_demo.py\n  dry run: seed_demo.py --dry-run\n  show: seed_demo.py --show\n""")
    )
    p.add_argument('--show', action='store_true', help='Print users with role and page count after seeding')
    p.add_argument('--dry-run', action='store_true', help='Report planned users without writing anything')
    return p.parse_args()


def main():
    args = parse_args()
    app = create_app()
    with app.app_context():
        session = get_db()
        try:
            session.execute(text('SELECT 1 FROM pcs_entries LIMIT 1'))
        except OperationalError:
            # Auto-create schema for bootstrap; in real env prefer alembic upgrade
            session.rollback()
            from opsgate.models import audit, notification, procurement, requests  # noqa: F401
            Base.metadata.create_all(session.get_bind())
        table = FallbackTable.from_file(app.config['IDENTITY_FALLBACK_FILE'])
        password = os.getenv('SEED_DEMO_PASSWORD', 'ChangeMe123!')
        created = ensure_users(session, table, password, dry_run=args.dry_run)
        if args.dry_run:
            for email, role in created:
                print(f'[DRY-RUN] would create {email} as {role}')
            print(f'[DRY-RUN] Users would create: {len(created)}')
        else:
            resolve_all(session, IdentityResolver.from_config(app.config, session=session))
            print(f'[DONE] Users created: {len(created)}')
        if args.show:
            print_summary(session)


if __name__ == '__main__':
    main()
