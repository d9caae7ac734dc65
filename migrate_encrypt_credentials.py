#!/usr/bin/env python3
"""
Encrypt WordPress credentials that were stored in plaintext.

Rows imported by hand (or before APP_FERNET_KEY was set) can hold plaintext
in the ``*_encrypted`` columns. This script finds those values and encrypts
them in place with the current key.

Usage:
    python migrate_encrypt_credentials.py [--dry-run]

Options:
    --dry-run    Show what would be encrypted without making changes
"""

import argparse
import sys

from agencydash import create_app
from agencydash.crypto_utils import encrypt_string, is_encrypted
from agencydash.extensions import db
from agencydash.models import WordPressCredential

SECRET_COLUMNS = (
    "username_encrypted",
    "app_password_encrypted",
    "shared_secret_encrypted",
    "ssh_host_encrypted",
    "ssh_user_encrypted",
    "ssh_key_encrypted",
)


def migrate_wordpress_credentials(dry_run=False):
    """Encrypt plaintext values in wordpress_credentials."""
    print("\n=== Migrating WordPressCredential records ===")

    rows = WordPressCredential.query.all()
    migrated_count = 0
    already_encrypted_count = 0

    for row in rows:
        plaintext_cols = [
            col for col in SECRET_COLUMNS
            if getattr(row, col) and not is_encrypted(getattr(row, col))
        ]
        if not plaintext_cols:
            already_encrypted_count += 1
            continue

        print(f"  Credential {row.id} ({row.site_url}): plaintext in {', '.join(plaintext_cols)}")
        if dry_run:
            print(f"  Credential {row.id}: [DRY RUN] Would encrypt {len(plaintext_cols)} column(s)")
        else:
            for col in plaintext_cols:
                setattr(row, col, encrypt_string(getattr(row, col)))
            db.session.add(row)
            print(f"  Credential {row.id}: encrypted")
        migrated_count += 1

    if not dry_run and migrated_count > 0:
        db.session.commit()
        print(f"\nCommitted {migrated_count} WordPressCredential updates")

    print("\nWordPressCredential Summary:")
    print(f"  Already encrypted: {already_encrypted_count}")
    print(f"  Newly encrypted: {migrated_count}")

    return migrated_count


def main():
    parser = argparse.ArgumentParser(description="Encrypt plaintext WordPress credentials")
    parser.add_argument("--dry-run", action="store_true",
                        help="Show what would be encrypted without making changes")
    args = parser.parse_args()

    print("=" * 60)
    print("Credential Encryption Migration Script")
    print("=" * 60)

    if args.dry_run:
        print("\n*** DRY RUN MODE - No changes will be made ***\n")

    app = create_app()

    with app.app_context():
        if not app.config.get("APP_FERNET_KEY"):
            print("\nERROR: APP_FERNET_KEY is not configured!")
            print("  Generate a key with:")
            print("    python -c 'from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())'")
            print("  Then set it in your environment or .env file")
            sys.exit(1)

        migrated = migrate_wordpress_credentials(args.dry_run)

        print("\n" + "=" * 60)
        if args.dry_run:
            print(f"[DRY RUN] Would encrypt {migrated} credential row(s)")
            print("Run without --dry-run to apply changes")
        else:
            print(f"Encrypted {migrated} credential row(s)")
        print("=" * 60)


if __name__ == "__main__":
    main()
