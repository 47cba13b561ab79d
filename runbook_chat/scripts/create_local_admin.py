"""
Script to create (or reset) a privileged local user with a password.
"""

import argparse
import asyncio
from typing import Optional

from runbook_chat.core.auth import hash_password
from runbook_chat.core.config import get_settings
from runbook_chat.core.documents import DocumentStore
from runbook_chat.models import User
from runbook_chat.services.directory import Directory


async def create_user(
    directory: Directory,
    email: str,
    password: str,
    role: str,
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
) -> User:
    existing = await directory.find_user_by_email(email)
    if existing:
        print(f"User {email} already exists, updating role and password.")
    else:
        print(f"Created user: {email}")

    user = await directory.upsert_user(
        User(email=email, role=role, first_name=first_name, last_name=last_name)
    )
    await directory.set_password_hash(email, hash_password(password))
    return user


def main() -> None:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Create a local admin user.")
    parser.add_argument("--email", required=True, help="User email")
    parser.add_argument("--password", required=True, help="User password")
    parser.add_argument("--first-name", default=None)
    parser.add_argument("--last-name", default=None)
    parser.add_argument("--role", default=settings.admin_role, help="Profile role")
    parser.add_argument("--data-dir", default=settings.data_dir, help="Directory of JSON collections")
    args = parser.parse_args()

    directory = Directory(DocumentStore(args.data_dir))
    user = asyncio.run(
        create_user(directory, args.email, args.password, args.role, args.first_name, args.last_name)
    )
    print(f"Done. {user.email} ({user.role}) id={user.id}")


if __name__ == "__main__":
    main()
