"""Give a mirrored user the staff capability needed to adjudicate disputes.

Usage:
    python scripts/grant_staff.py staff@plotshare.example [admin|super_admin]
"""

import asyncio
import sys

from sqlalchemy import select

from plotshare.database import async_session
from plotshare.models.enums import STAFF_ROLES, UserRole
from plotshare.models.user import User


async def grant_staff(email: str, role: UserRole) -> None:
    async with async_session() as db:
        result = await db.execute(select(User).where(User.email == email))
        user = result.scalar_one_or_none()
        if user is None:
            print(f"Error: no user with email '{email}'. Sync it from the identity provider first.")
            sys.exit(1)

        user.role = role
        await db.commit()
        print(f"{email} (id={user.id}) now has role '{role.value}'")


def main() -> None:
    if len(sys.argv) not in (2, 3):
        print("Usage: python scripts/grant_staff.py <email> [admin|super_admin]")
        sys.exit(1)

    role = UserRole(sys.argv[2]) if len(sys.argv) == 3 else UserRole.ADMIN
    if role not in STAFF_ROLES:
        print(f"Error: '{role.value}' is not a staff role")
        sys.exit(1)

    asyncio.run(grant_staff(sys.argv[1], role))


if __name__ == "__main__":
    main()
