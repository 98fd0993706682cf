import json
import logging
from pathlib import Path

from pydantic import ValidationError

from .database import db
from .models import NewContentItem

logger = logging.getLogger(__name__)


class CatalogImporter:
    """Import catalog entries from a JSON export."""

    async def import_file(self, path: Path) -> int:
        """Import every valid entry of a JSON list, skipping ones already present."""
        logger.info(f"Importing catalog from {path}...")
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        if isinstance(data, dict):
            data = data.get("items", [])
        if not isinstance(data, list):
            logger.error("Catalog file must contain a list of items")
            return 0

        imported = 0
        skipped = 0
        for raw in data:
            try:
                item = NewContentItem.model_validate(raw)
            except ValidationError as e:
                logger.warning(f"Skipping invalid item {raw!r:.80}: {e.error_count()} error(s)")
                skipped += 1
                continue

            if await db.content_exists(item.title, item.url):
                skipped += 1
                continue

            await db.create_content(item)
            imported += 1

        logger.info(f"Import complete: {imported} imported, {skipped} skipped")
        return imported


async def run_import(path: Path) -> int:
    """Run the import process."""
    await db.connect()
    try:
        importer = CatalogImporter()
        return await importer.import_file(path)
    finally:
        await db.close()
