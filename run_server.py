import os

import uvicorn

from gbfs_explorer.config import settings
from utils.logging_utils import get_tagged_logger, mask_secret, setup_logging

logger = get_tagged_logger(__name__, tag="server")


def log_startup_configuration() -> None:
    """Log the upstream endpoints and whether credentials are present, never their values."""
    logger.info(f"Catalog API: {settings.mobility_database_url}")
    logger.info(f"Catalog refresh token: {mask_secret(settings.mobility_database_refresh_token)}")
    if not settings.mobility_database_refresh_token:
        logger.warning("MOBILITY_DATABASE_REFRESH_TOKEN is not set; /api/feeds will fail until it is configured.")
    if not settings.mapbox_access_token:
        logger.warning("MAPBOX_ACCESS_TOKEN is not set; /api/config will return an error.")


if __name__ == "__main__":
    setup_logging(level=settings.log_level, job_name="gbfs_explorer")
    log_startup_configuration()

    uvicorn.run(
        "gbfs_explorer.main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8000)),
        reload=False,
    )
