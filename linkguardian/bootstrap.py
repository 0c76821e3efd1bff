"""
Create a user and print a first admin API key.

    python -m linkguardian.bootstrap --email you@example.com
"""

import argparse
import asyncio
import logging
from typing import Optional

from .config import Settings
from .crud import create_api_token, create_user, get_user_by_email
from .database import create_engine, create_session_factory, create_tables
from .logging_config import setup_logging
from .models import ApiToken, Plan, User
from .security import generate_api_token, hash_token

logger = logging.getLogger(__name__)


async def bootstrap(settings: Settings, email: str, name: Optional[str] = None, plan: str = Plan.FREE.value) -> str:
    engine = create_engine(settings.DATABASE_URL)
    try:
        await create_tables(engine)
        session_factory = create_session_factory(engine)
        async with session_factory() as db:
            user = await get_user_by_email(db, email)
            if user is None:
                user = await create_user(db, User(email=email, name=name, plan=plan))
                logger.info(f"Created user {user.id} <{email}>")

            plaintext = generate_api_token()
            await create_api_token(
                db,
                ApiToken(user_id=user.id, name="bootstrap", token_hash=hash_token(plaintext), scopes=["admin"]),
            )
        return plaintext
    finally:
        await engine.dispose()


def main(argv=None):
    parser = argparse.ArgumentParser(description="Create a user and an admin API key")
    parser.add_argument("--email", required=True)
    parser.add_argument("--name")
    parser.add_argument("--plan", choices=[p.value for p in Plan], default=Plan.FREE.value)
    args = parser.parse_args(argv)

    settings = Settings()
    setup_logging(settings.LOG_LEVEL)
    token = asyncio.run(bootstrap(settings, args.email, args.name, args.plan))
    print(token)


if __name__ == "__main__":
    main()
