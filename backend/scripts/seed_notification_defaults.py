"""Install the default pt-BR notification templates and triggers.

Existing rows are left untouched, so this is safe to re-run after deploys.

Usage:
    python scripts/seed_notification_defaults.py
"""

import asyncio

from ventushub.db.session import async_session_factory, engine
from ventushub.services.defaults import seed_defaults


async def run():
    async with async_session_factory() as session:
        added = await seed_defaults(session)
        await session.commit()
    await engine.dispose()
    return added


def main():
    added = asyncio.run(run())
    print(f"Templates added: {added['templates']}")
    print(f"Triggers added:  {added['triggers']}")


if __name__ == "__main__":
    main()
