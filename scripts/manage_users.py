#!/usr/bin/env python3
"""AIourStory operator CLI.

Usage:
  python scripts/manage_users.py promote <username-or-email>   # Grant admin role
  python scripts/manage_users.py demote <username-or-email>    # Back to a normal user
  python scripts/manage_users.py purge                         # Delete expired codes and tokens now
  python scripts/manage_users.py init-db                       # Create tables (dev only; use alembic in prod)
"""
import asyncio
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


async def _set_role(role: str):
    if len(sys.argv) < 3:
        print(__doc__)
        sys.exit(1)

    from aistory.db import engine as engine_mod
    from aistory.errors import AppError
    from aistory.services.accounts import AccountService

    async with engine_mod.async_session() as session:
        try:
            user = await AccountService(session).set_role(sys.argv[2], role)
        except AppError as e:
            print(f"❌ {e.message}")
            sys.exit(1)
    print(f"✅ {user['username']} ({user['uuid']}) is now {user['role']}")


async def cmd_promote():
    await _set_role("admin")


async def cmd_demote():
    await _set_role("user")


async def cmd_purge():
    from aistory.services.housekeeping import purge_expired
    purged = await purge_expired()
    print(f"🧹 Purged {purged['codes']} codes, {purged['refreshTokens']} refresh tokens, "
          f"{purged['sendCounters']} send counters")


async def cmd_init_db():
    from aistory.db import engine as engine_mod
    from aistory.db.tables import Base
    import aistory.db.user_tables  # noqa: F401
    import aistory.db.email_code_tables  # noqa: F401
    import aistory.db.report_tables  # noqa: F401

    async with engine_mod.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    print("✅ Tables created")


COMMANDS = {
    "promote": cmd_promote,
    "demote": cmd_demote,
    "purge": cmd_purge,
    "init-db": cmd_init_db,
}


def main():
    if len(sys.argv) < 2 or sys.argv[1] not in COMMANDS:
        print(__doc__)
        sys.exit(1)
    asyncio.run(COMMANDS[sys.argv[1]]())


if __name__ == "__main__":
    main()
