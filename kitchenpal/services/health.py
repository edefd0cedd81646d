"""Parallel health probes for the upstream APIs.

Overall status:
- unhealthy: the primary text provider probe returned an error
- degraded: any probed service errored or is not configured
- healthy: everything answered
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Optional

import aiohttp

from kitchenpal.models.models import HealthResponse, ServiceHealth
from kitchenpal.services.voice import ELEVENLABS_BASE_URL
from kitchenpal.utils.config import Config, config
from kitchenpal.utils.logger import logger

GEMINI_MODELS_URL = "https://generativelanguage.googleapis.com/v1beta/models"


async def _probe(
    session: aiohttp.ClientSession,
    url: str,
    headers: Optional[dict] = None,
    params: Optional[dict] = None,
) -> ServiceHealth:
    started = time.perf_counter()
    try:
        async with session.get(url, headers=headers, params=params) as response:
            latency_ms = int((time.perf_counter() - started) * 1000)
            if response.status < 400:
                return ServiceHealth(status="ok", latency_ms=latency_ms)
            message = f"HTTP {response.status}"
            try:
                body = await response.json(content_type=None)
                if isinstance(body, dict) and isinstance(body.get("error"), dict):
                    message = body["error"].get("message") or message
            except ValueError:
                pass
            return ServiceHealth(status="error", message=message, latency_ms=latency_ms)
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        return ServiceHealth(
            status="error",
            message=str(e) or "Connection failed",
            latency_ms=int((time.perf_counter() - started) * 1000),
        )


class HealthService:
    """Probes Gemini, DeepSeek and ElevenLabs concurrently."""

    def __init__(self, settings: Config = config, timeout_seconds: float = 5.0) -> None:
        self.settings = settings
        self.timeout_seconds = timeout_seconds

    @property
    def text_providers(self) -> set[str]:
        return {name for name in (self.settings.TEXT_PROVIDER, self.settings.FALLBACK_PROVIDER) if name}

    async def check_gemini(self, session: aiohttp.ClientSession) -> ServiceHealth:
        if not self.settings.GEMINI_API_KEY:
            return ServiceHealth(status="not_configured", message="GEMINI_API_KEY not set")
        return await _probe(session, GEMINI_MODELS_URL, params={"key": self.settings.GEMINI_API_KEY})

    async def check_deepseek(self, session: aiohttp.ClientSession) -> ServiceHealth:
        if not self.settings.DEEPSEEK_API_KEY:
            return ServiceHealth(status="not_configured", message="DEEPSEEK_API_KEY not set")
        return await _probe(
            session,
            f"{self.settings.DEEPSEEK_BASE_URL.rstrip('/')}/models",
            headers={"Authorization": f"Bearer {self.settings.DEEPSEEK_API_KEY}"},
        )

    async def check_elevenlabs(self, session: aiohttp.ClientSession) -> ServiceHealth:
        if not self.settings.ELEVENLABS_API_KEY:
            return ServiceHealth(status="not_configured", message="ELEVENLABS_API_KEY not set")
        return await _probe(session, f"{ELEVENLABS_BASE_URL}/user", headers={"xi-api-key": self.settings.ELEVENLABS_API_KEY})

    async def check(self) -> HealthResponse:
        probe_deepseek = "deepseek" in self.text_providers
        async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout_seconds)) as session:
            probes = [self.check_gemini(session), self.check_elevenlabs(session)]
            if probe_deepseek:
                probes.append(self.check_deepseek(session))
            results = await asyncio.gather(*probes)

        services = {"gemini": results[0], "elevenlabs": results[1]}
        if probe_deepseek:
            services["deepseek"] = results[2]
        else:
            services["deepseek"] = ServiceHealth(status="not_configured", message="Not in the provider chain")

        probed = {name: health for name, health in services.items() if name != "deepseek" or probe_deepseek}
        return HealthResponse(
            status=aggregate_status(probed, critical=self.settings.TEXT_PROVIDER),
            timestamp=datetime.now(timezone.utc),
            services=services,
        )


def aggregate_status(services: dict[str, ServiceHealth], critical: str = "gemini") -> str:
    """healthy / degraded / unhealthy from individual probe results."""
    critical_health = services.get(critical)
    if critical_health is not None and critical_health.status == "error":
        logger.error(f"Critical service {critical} is down: {critical_health.message}",
                     extra={"provider": critical})
        return "unhealthy"
    if any(health.status != "ok" for health in services.values()):
        return "degraded"
    return "healthy"
