"""Composition root: builds the shared services and the FastAPI application.

Rate limiters, caches and the conversation store are the only shared mutable
state. They are constructed here once per application and handed to the
handlers through ``app.state.services``.
"""

from typing import Optional

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from kitchenpal.api.routes import (
    ServiceContainer,
    router,
    service_exception_handler,
    validation_exception_handler,
)
from kitchenpal.services.cache import ContentCache
from kitchenpal.services.chat import ChatPipeline
from kitchenpal.services.conversations import ConversationStore
from kitchenpal.services.errors import ServiceError
from kitchenpal.services.health import HealthService
from kitchenpal.services.images import ImageService
from kitchenpal.services.providers import build_provider_chain
from kitchenpal.services.rate_limiter import RateLimiter
from kitchenpal.services.vision import VisionService
from kitchenpal.services.voice import VoiceService
from kitchenpal.utils.config import Config, config
from kitchenpal.utils.logger import logger


def build_services(settings: Config = config) -> ServiceContainer:
    """Wire providers, limiters, caches and services from ``settings``."""
    text_limiter = RateLimiter(
        max_requests=settings.TEXT_RATE_LIMIT,
        window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
        max_queue_size=settings.RATE_LIMIT_QUEUE_SIZE,
        queue_timeout=settings.RATE_LIMIT_QUEUE_TIMEOUT_SECONDS,
        name="text",
    )
    image_limiter = RateLimiter(
        max_requests=settings.IMAGE_RATE_LIMIT,
        window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
        max_queue_size=settings.RATE_LIMIT_QUEUE_SIZE,
        queue_timeout=settings.RATE_LIMIT_QUEUE_TIMEOUT_SECONDS,
        name="image",
    )
    image_cache = ContentCache(
        ttl_seconds=settings.IMAGE_CACHE_TTL_SECONDS, max_entries=settings.IMAGE_CACHE_MAX_ENTRIES, name="image"
    )
    recipe_cache = ContentCache(
        ttl_seconds=settings.RECIPE_CACHE_TTL_SECONDS, max_entries=settings.RECIPE_CACHE_MAX_ENTRIES, name="recipe"
    )

    providers = build_provider_chain(settings)
    logger.info(f"Text provider chain: {' → '.join(provider.name for provider in providers)}")

    return ServiceContainer(
        chat=ChatPipeline(
            providers,
            ConversationStore(),
            rate_limiter=text_limiter,
            recipe_cache=recipe_cache,
            settings=settings,
        ),
        images=ImageService(image_cache, image_limiter, settings=settings),
        voice=VoiceService(settings=settings),
        vision=VisionService(settings=settings, rate_limiter=text_limiter),
        health=HealthService(settings=settings),
        text_limiter=text_limiter,
        image_limiter=image_limiter,
        image_cache=image_cache,
        recipe_cache=recipe_cache,
    )


def create_app(settings: Config = config, services: Optional[ServiceContainer] = None) -> FastAPI:
    """FastAPI application with CORS, error handlers and the /api router."""
    app = FastAPI(title="KitchenPal Assistant", version="1.0.0")
    app.state.services = services or build_services(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=settings.CORS_ORIGINS != ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Character-Count"],
    )
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(ServiceError, service_exception_handler)
    app.include_router(router)
    return app
