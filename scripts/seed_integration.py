"""
Seed an integration so webhooks can be sent to it locally.

Usage:
    python scripts/seed_integration.py --platform instagram --secret devsecret
    python scripts/seed_integration.py --platform hubspot --create-tables

Prints the integration id and an operator token for GET /webhooks.
"""
import argparse
import asyncio
import logging
import uuid

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from leadhooks.config import get_settings
from leadhooks.database import Base
from leadhooks.models.integration import Integration
from leadhooks.api.auth import create_operator_token

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def seed(platform: str, secret: str, user_id: uuid.UUID, create_tables: bool) -> None:
    settings = get_settings()
    engine = create_async_engine(settings.database_url)

    if create_tables:
        # Local SQLite runs only; PostgreSQL goes through alembic
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        integration = Integration(
            user_id=user_id,
            platform=platform,
            webhook_secret=secret,
            is_active=True,
        )
        session.add(integration)
        await session.commit()

        logger.info("Integration created: id=%s platform=%s", integration.id, platform)
        logger.info("Webhook URL: %s/webhooks/%s/%s", settings.app_base_url, platform, integration.id)
        logger.info("Operator token: %s", create_operator_token(user_id))

    await engine.dispose()


def main():
    parser = argparse.ArgumentParser(description="Seed a webhook integration")
    parser.add_argument("--platform", default="instagram")
    parser.add_argument("--secret", default="devsecret")
    parser.add_argument("--user-id", default=None)
    parser.add_argument("--create-tables", action="store_true")
    args = parser.parse_args()

    user_id = uuid.UUID(args.user_id) if args.user_id else uuid.uuid4()
    asyncio.run(seed(args.platform, args.secret, user_id, args.create_tables))


if __name__ == "__main__":
    main()
