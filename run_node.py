import uvicorn
import logging
import os
from dotenv import dotenv_values

from darkpool.config import load_config
from darkpool.exchange.settlement import EnvKeyProvider, RecordingSettlement
from darkpool.logger import set_log_level
from darkpool.node import create_app
from darkpool.service import DarkPoolService

# Configure uvicorn loggers to suppress WARNING messages
uvicorn_loggers = [
    logging.getLogger("uvicorn"),
    logging.getLogger("uvicorn.error"),
    logging.getLogger("uvicorn.access"),
    logging.getLogger("uvicorn.asgi"),
]

for uvicorn_logger in uvicorn_loggers:
    # Only show ERROR and CRITICAL, suppress WARNING
    uvicorn_logger.setLevel(logging.ERROR)
    # Remove handlers to prevent duplicate output
    uvicorn_logger.handlers = []

env = dotenv_values(".env")

# Prioritize environment variables over .env file
ENGINE_PRIVATE_KEY = os.getenv("DARKPOOL_ENGINE_PRIVATE_KEY", env.get("DARKPOOL_ENGINE_PRIVATE_KEY", ""))

if __name__ == "__main__":
    config = load_config()
    set_log_level(config.logging.level)
    service = DarkPoolService.from_config(
        config,
        EnvKeyProvider(value=ENGINE_PRIVATE_KEY or None),
        RecordingSettlement(),
    )
    app = create_app(service, cors_origins=config.api.cors_origins)

    uvicorn.run(
        app,
        host=config.api.host,
        port=config.api.port,
        reload=False,
        access_log=False,
        log_config=None
    )
