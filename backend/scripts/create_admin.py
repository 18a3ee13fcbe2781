"""Create a back-office user for the referral admin API.

Usage:
    python scripts/create_admin.py ops@example.com 'a long password'
    python scripts/create_admin.py --role staff support@example.com 'another password'
"""

import argparse
import asyncio
import sys

from sqlalchemy import select

from referral_engine.auth.service import hash_password
from referral_engine.database import async_session
from referral_engine.models.enums import UserRole
from referral_engine.models.user import User

MIN_PASSWORD_LENGTH = 12


async def create_user(email: str, password: str, role: UserRole) -> int:
    async with async_session() as db:
        result = await db.execute(select(User).where(User.email == email))
        if result.scalar_one_or_none():
            print(f"Error: user '{email}' already exists.")
            return 1

        user = User(email=email, password_hash=hash_password(password), role=role)
        db.add(user)
        await db.commit()
        print(f"{role.value} user created: {email} (id={user.id})")
        return 0


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("email")
    parser.add_argument("password")
    parser.add_argument("--role", choices=[r.value for r in UserRole], default=UserRole.ADMIN.value)
    args = parser.parse_args()

    if len(args.password) < MIN_PASSWORD_LENGTH:
        print(f"Error: password must be at least {MIN_PASSWORD_LENGTH} characters.")
        sys.exit(1)

    sys.exit(asyncio.run(create_user(args.email.strip().lower(), args.password, UserRole(args.role))))


if __name__ == "__main__":
    main()
