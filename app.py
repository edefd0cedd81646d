"""KitchenPal Assistant - FastAPI application.

Single entry point for the HTTP service:
- Builds rate limiters, caches, the conversation store and the provider chain
- Serves chat, recipe, voice, vision, image and health endpoints under /api

Run with: python app.py
"""

import uvicorn

from kitchenpal.api.factory import create_app
from kitchenpal.utils.config import config
from kitchenpal.utils.logger import logger

app = create_app(config)


if __name__ == "__main__":
    logger.info(f"Starting KitchenPal Assistant on port {config.PORT}")
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
