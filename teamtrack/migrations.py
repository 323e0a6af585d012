import logging
from typing import Dict

from .errors import ValidationError
from .models import CODECS, SCHEMA_VERSION
from .store import DocumentStore

logger = logging.getLogger(__name__)


async def upgrade_documents(store: DocumentStore) -> Dict[str, int]:
    """
    Rewrite every document below the current schema version.

    Documents are decoded with the typed codec, which understands the
    legacy camelCase layout, and written back in the current layout.
    Running it again finds nothing to do. Returns the number of upgraded
    documents per collection; undecodable documents are logged and left
    as they are.
    """
    upgraded = {}

    for collection, codec in CODECS.items():
        count = 0
        for doc in await store.query(collection):
            if doc.get('schema_version') == SCHEMA_VERSION:
                continue
            try:
                record = codec.from_document(doc)
            except (KeyError, TypeError, ValueError, ValidationError) as e:
                logger.warning(f"Skipping {collection}/{doc.get('id')}: cannot decode ({e})")
                continue

            await store.set(collection, record.id, record.to_document())
            count += 1

        if count:
            logger.info(f"Upgraded {count} documents in {collection} to schema v{SCHEMA_VERSION}")
        upgraded[collection] = count

    return upgraded
