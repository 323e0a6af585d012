#!/usr/bin/env python3
"""
Document store management script for deployment.
Run this during the build/deployment pipeline to upgrade stored documents
to the current schema version.
"""
import asyncio
import logging
import os
import sys

# Add current directory to path so we can import teamtrack
sys.path.append(os.getcwd())

from teamtrack.config import config
from teamtrack.errors import StoreUnavailableError
from teamtrack.migrations import upgrade_documents
from teamtrack.store import build_store


async def upgrade(config_name: str):
    settings = config[config_name]
    store = build_store({
        'STORE_BACKEND': settings.STORE_BACKEND,
        'REDIS_URL': settings.REDIS_URL,
        'STORE_KEY_PREFIX': settings.STORE_KEY_PREFIX,
    })
    try:
        return await upgrade_documents(store)
    finally:
        await store.close()


def deploy():
    """Run deployment tasks."""
    logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s %(name)s: %(message)s')
    config_name = os.getenv('FLASK_ENV', 'development')

    print("Starting document upgrade...")
    try:
        upgraded = asyncio.run(upgrade(config_name))
    except StoreUnavailableError as e:
        print(f"Error upgrading documents: {e}")
        sys.exit(1)

    total = sum(upgraded.values())
    print(f"✓ {total} documents upgraded.")


if __name__ == '__main__':
    deploy()
