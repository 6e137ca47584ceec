#!/usr/bin/env python
"""Mint a development access token for a role preset.

Authentication proper lives outside this service; this is for local testing
against a running instance.

Usage:
    python backend/scripts/issue_token.py --user-id 7 --role Technician --branch 10
    python backend/scripts/issue_token.py --user-id 3 --role BranchManager --branch 1 --branch 2 --name "Branch One"
    python backend/scripts/issue_token.py --user-id 1 --role Owner            # unscoped, every permission
    python backend/scripts/issue_token.py --list-roles
"""
from __future__ import annotations
import os, sys, argparse, json
from datetime import timedelta

# Allow running from repo root
sys.path.append(os.path.abspath('backend'))

from flask_jwt_extended import create_access_token
from app import create_app  # type: ignore
from app.constants.permissions import ROLE_PRESETS, expand_preset


def issue(user_id: int, role: str, branch_ids: list[int], name: str | None, hours: int) -> str:
    app = create_app()
    with app.app_context():
        claims = {'perms': expand_preset(role), 'branch_ids': branch_ids}
        if name:
            claims['name'] = name
        return create_access_token(
            identity=str(user_id),
            additional_claims=claims,
            expires_delta=timedelta(hours=hours),
        )


def main(argv: list[str]) -> int:
    p = argparse.ArgumentParser(description='Issue a development JWT')
    p.add_argument('--user-id', type=int, help='Subject (user id)')
    p.add_argument('--role', choices=sorted(ROLE_PRESETS), default='Technician')
    p.add_argument('--branch', dest='branches', type=int, action='append', default=[],
                   help='Branch id in scope (repeatable; omit for unscoped)')
    p.add_argument('--name', help='Display name stored in the token')
    p.add_argument('--hours', type=int, default=8, help='Lifetime in hours')
    p.add_argument('--list-roles', action='store_true', help='Print role presets and exit')
    args = p.parse_args(argv)

    if args.list_roles:
        print(json.dumps({r: expand_preset(r) for r in sorted(ROLE_PRESETS)}, indent=2))
        return 0
    if args.user_id is None:
        p.error('--user-id is required')
    print(issue(args.user_id, args.role, args.branches, args.name, args.hours))
    return 0


if __name__ == '__main__':  # pragma: no cover
    sys.exit(main(sys.argv[1:]))
