import argparse
import asyncio
import logging
from pathlib import Path
from typing import Optional

import uvicorn

from .config import settings

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


class CinefindServer:
    def __init__(self):
        self._server: Optional[uvicorn.Server] = None

    async def start(self) -> None:
        """Start the CineFind server.

        uvicorn handles SIGINT/SIGTERM; the app lifespan opens and closes
        the database.
        """
        logger.info("Starting CineFind...")
        from webapp.app import app

        config = uvicorn.Config(
            app,
            host="0.0.0.0",
            port=settings.web_port,
            log_level=settings.log_level.lower(),
            ws="websockets",
        )
        self._server = uvicorn.Server(config)
        logger.info(f"CineFind available at http://localhost:{settings.web_port}")
        try:
            await self._server.serve()
        except asyncio.CancelledError:
            pass
        logger.info("CineFind stopped")


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="CineFind - video catalog and activity tracker")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    import_parser = subparsers.add_parser("import", help="Import catalog entries from a JSON file")
    import_parser.add_argument("file", type=Path, help="JSON file with a list of items")

    args = parser.parse_args()

    if args.command == "import":
        from .importer import run_import

        if not args.file.exists():
            parser.error(f"{args.file} does not exist")
        count = asyncio.run(run_import(args.file))
        logger.info(f"Imported {count} items")
    else:
        server = CinefindServer()
        asyncio.run(server.start())


if __name__ == "__main__":
    main()
