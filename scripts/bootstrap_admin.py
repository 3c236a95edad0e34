#!/usr/bin/env python3
"""Create or promote an admin account for initial setup.

Usage:
    # Using environment variables:
    ADMIN_EMAIL=admin@example.com ADMIN_PASSWORD=SecurePassword123! python scripts/bootstrap_admin.py

    # Or with command line args:
    python scripts/bootstrap_admin.py --email admin@example.com --password SecurePassword123!

The account is created active and verified so it can log in straight away;
login still requires the emailed one-time code.

Environment Variables:
    ADMIN_EMAIL: Email for the admin account
    ADMIN_PASSWORD: Password for the admin account
    ADMIN_DISPLAY_NAME: Display name (defaults to "Administrator")
    SHARED_FS_ROOT: Directory holding the account store snapshot
"""
from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def bootstrap_admin(
    email: str,
    password: str,
    *,
    display_name: str = "Administrator",
    dry_run: bool = False,
    runtime=None,
) -> dict:
    """Create or promote an admin account.

    Returns:
        dict with account_id, email and status ('created', 'promoted',
        'already_admin' or 'dry_run')
    """
    # Import here to avoid loading config before env vars are set
    from passgate.service.auth import is_valid_email
    from passgate.service.runtime import get_runtime

    runtime = runtime or get_runtime()
    if not is_valid_email(email):
        raise ValueError("invalid email format")
    minimum = runtime.settings.min_password_length
    if len(password) < minimum:
        raise ValueError(f"password must be at least {minimum} characters long")

    existing = runtime.store.get_by_email(email)
    if existing:
        if existing.role == "admin" and existing.can_login:
            print(f"Account {email} is already an admin (id: {existing.id})")
            return {"account_id": existing.id, "email": email, "status": "already_admin"}

        if dry_run:
            print(f"[DRY RUN] Would promote existing account {email} to admin")
            return {"account_id": existing.id, "email": email, "status": "dry_run"}

        changes = {"role": "admin", "is_active": True, "is_email_verified": True}
        if not existing.password:
            changes["password"] = runtime.hasher.hash(password)
        runtime.store.update(existing.id, changes)
        print(f"Promoted existing account {email} to admin (id: {existing.id})")
        return {"account_id": existing.id, "email": email, "status": "promoted"}

    if dry_run:
        print(f"[DRY RUN] Would create admin account: {email}")
        return {"account_id": None, "email": email, "status": "dry_run"}

    account = runtime.store.create(
        email=email,
        display_name=display_name,
        password=runtime.hasher.hash(password),
        role="admin",
        plan="enterprise",
        is_active=True,
        is_email_verified=True,
        api_requests_limit=runtime.settings.default_api_requests_limit,
    )
    print(f"Created admin account: {email} (id: {account.id})")
    return {"account_id": account.id, "email": email, "status": "created"}


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Bootstrap an admin account for Passgate",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--email",
        default=os.environ.get("ADMIN_EMAIL"),
        help="Admin email (or set ADMIN_EMAIL env var)",
    )
    parser.add_argument(
        "--password",
        default=os.environ.get("ADMIN_PASSWORD"),
        help="Admin password (or set ADMIN_PASSWORD env var)",
    )
    parser.add_argument(
        "--display-name",
        default=os.environ.get("ADMIN_DISPLAY_NAME", "Administrator"),
        help="Display name for a newly created account",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )

    args = parser.parse_args(argv)

    if not args.email:
        print("Error: --email or ADMIN_EMAIL environment variable required")
        return 1

    if not args.password:
        print("Error: --password or ADMIN_PASSWORD environment variable required")
        return 1

    if not os.environ.get("SHARED_FS_ROOT"):
        os.environ["SHARED_FS_ROOT"] = "/tmp/passgate-bootstrap"
        print("Note: SHARED_FS_ROOT not set, using /tmp/passgate-bootstrap")

    try:
        result = bootstrap_admin(
            args.email,
            args.password,
            display_name=args.display_name,
            dry_run=args.dry_run,
        )
    except (ValueError, RuntimeError) as e:
        print(f"Error: {e}")
        return 1

    if result["status"] == "created":
        print("\nAdmin account created successfully!")
        print(f"  Email: {result['email']}")
        print(f"  Account ID: {result['account_id']}")
    elif result["status"] == "promoted":
        print("\nExisting account promoted to admin!")
    elif result["status"] == "already_admin":
        print("\nNo changes needed - account is already an admin.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
