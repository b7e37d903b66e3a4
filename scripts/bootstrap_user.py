#!/usr/bin/env python3
"""Bootstrap a password account for testing and initial setup.

Usage:
    # Using environment variables:
    BOOTSTRAP_USERNAME=operator_01 BOOTSTRAP_PASSWORD=Secret1234 python scripts/bootstrap_user.py

    # Or with command line args:
    python scripts/bootstrap_user.py --username operator_01 --password Secret1234

Environment Variables:
    BOOTSTRAP_USERNAME: Username for the account (6-32 letters, digits or _-.@#$%^&*)
    BOOTSTRAP_PASSWORD: Password for the account (8-32 letters, digits or _-.@#$%^&*)
    DATABASE_URL: PostgreSQL connection string (optional, uses memory store if not set)
"""
from __future__ import annotations

import argparse
import asyncio
import os
import sys
from pathlib import Path

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


async def bootstrap_user(username: str, password: str, dry_run: bool = False) -> dict:
    """Create a password account unless one already exists.

    Returns:
        dict with user_id, username, and status ('created', 'exists' or 'dry_run')
    """
    # Import here to avoid loading config before env vars are set
    from authix.service.runtime import get_runtime

    runtime = get_runtime()

    existing_user = runtime.store.get_user_by_username(username)
    if existing_user:
        print(f"User {username} already exists (id: {existing_user.id})")
        return {"user_id": existing_user.id, "username": username, "status": "exists"}

    if dry_run:
        print(f"[DRY RUN] Would create user: {username}")
        return {"user_id": None, "username": username, "status": "dry_run"}

    user_id = await runtime.auth.register("password", username, password)
    tokens = await runtime.auth.login("password", username, password)

    print(f"Created user: {username} (id: {user_id})")
    return {
        "user_id": user_id,
        "username": username,
        "status": "created",
        "access_token": tokens.access_token,
    }


def main():
    parser = argparse.ArgumentParser(
        description="Bootstrap a password account for authix",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--username",
        default=os.environ.get("BOOTSTRAP_USERNAME"),
        help="Username (or set BOOTSTRAP_USERNAME env var)",
    )
    parser.add_argument(
        "--password",
        default=os.environ.get("BOOTSTRAP_PASSWORD"),
        help="Password (or set BOOTSTRAP_PASSWORD env var)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )

    args = parser.parse_args()

    if not args.username:
        print("Error: --username or BOOTSTRAP_USERNAME environment variable required")
        sys.exit(1)

    if not args.password:
        print("Error: --password or BOOTSTRAP_PASSWORD environment variable required")
        sys.exit(1)

    from authix.service.validation import is_valid_password, is_valid_username

    if not is_valid_username(args.username):
        print("Error: Username must be 6-32 letters, digits or _-.@#$%^&*")
        sys.exit(1)

    if not is_valid_password(args.password):
        print("Error: Password must be 8-32 letters, digits or _-.@#$%^&*")
        sys.exit(1)

    if not os.environ.get("SHARED_FS_ROOT"):
        os.environ["SHARED_FS_ROOT"] = "/tmp/authix-bootstrap"

    # Use memory store if no database configured
    if not os.environ.get("DATABASE_URL"):
        os.environ["USE_MEMORY_STORE"] = "true"
        print("Note: Using in-memory store (set DATABASE_URL for persistence)")

    os.environ.setdefault("ALLOW_REDIS_FALLBACK_DEV", "true")

    try:
        result = asyncio.run(bootstrap_user(args.username, args.password, args.dry_run))

        if result["status"] == "created":
            print("\nUser created successfully!")
            print(f"  Username: {result['username']}")
            print(f"  User ID: {result['user_id']}")
            if result.get("access_token"):
                print(f"  Access Token: {result['access_token'][:50]}...")
        elif result["status"] == "exists":
            print("\nNo changes needed - user already exists.")

    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
