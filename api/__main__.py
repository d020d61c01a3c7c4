"""Command line interface for running the API server."""
import asyncio
import logging

import uvicorn

from config import settings_conf

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings_conf['log_level'], logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


class UvicornServer:
    """Wrapper for running uvicorn inside an existing event loop."""

    def __init__(self, app_path: str = "api:app", host: str = "0.0.0.0", port: int = 8080):
        self.config = uvicorn.Config(
            app_path,
            host=host,
            port=port,
            log_level=settings_conf['log_level'].lower()
        )
        self.server = uvicorn.Server(self.config)

    async def run(self):
        await self.server.serve()


async def main():
    """Run the API server until it is interrupted."""
    server = UvicornServer(
        host=settings_conf['api_host'],
        port=settings_conf['api_port']
    )
    logger.info(
        f"Starting API on {settings_conf['api_host']}:{settings_conf['api_port']} "
        f"with {settings_conf['storage_backend']} storage"
    )
    try:
        await server.run()
    finally:
        logger.info("API server stopped")


if __name__ == "__main__":
    asyncio.run(main())
