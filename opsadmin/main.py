import logging

import uvicorn

from .core.config import Config

# Configure logging
logging.basicConfig(
    level=getattr(logging, Config.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(),
    ]
)
logger = logging.getLogger(__name__)


def run() -> None:
    from .app import app

    uvicorn.run(app, host="0.0.0.0", port=8080)


if __name__ == "__main__":
    run()
