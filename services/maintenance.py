"""
Background maintenance: periodic sweeps of caches, rate limiters and detector
state, plus the optional background license re-validation loop.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from caching.rate_limit_cache import RateLimitCache
from security.attack_pattern_analysis import AttackPatternAnalysisEngine
from services.license_gateway import LicenseGateway
from services.license_validator import LicenseValidator

logger = logging.getLogger(__name__)


class MaintenanceScheduler:
    """Owns the long-running maintenance tasks started by the app lifespan."""

    def __init__(self,
                 gateway: LicenseGateway,
                 validator: LicenseValidator,
                 module_rate_limiter: RateLimitCache,
                 engine: AttackPatternAnalysisEngine,
                 sweep_interval: float = 300,
                 background_validation_interval: Optional[float] = None):
        self.gateway = gateway
        self.validator = validator
        self.module_rate_limiter = module_rate_limiter
        self.engine = engine
        self.sweep_interval = sweep_interval
        self.background_validation_interval = background_validation_interval

        self._tasks: List[asyncio.Task] = []
        self.last_sweep: Dict[str, int] = {}

    def sweep_once(self) -> Dict[str, int]:
        """Run every sweep once; each one evicts entries one at a time."""
        result = {
            'licenseCache': self.gateway.sweep(),
            'moduleCache': self.validator.sweep(),
            'rateLimits': self.module_rate_limiter.sweep(),
            'attackPatterns': self.engine.sweep(),
        }
        self.last_sweep = result
        logger.debug(f"[MAINTENANCE] Sweep finished: {result}")
        return result

    async def _sweep_loop(self):
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                self.sweep_once()
            except Exception as e:
                logger.error(f"❌ [MAINTENANCE] Sweep failed: {e}", exc_info=True)

    async def _background_validation_loop(self):
        while True:
            await asyncio.sleep(self.background_validation_interval)
            try:
                await self.gateway.run_background_validation()
            except Exception as e:
                logger.error(f"❌ [MAINTENANCE] Background license validation failed: {e}", exc_info=True)

    async def start(self):
        self._tasks.append(asyncio.create_task(self._sweep_loop()))
        if self.background_validation_interval:
            self._tasks.append(asyncio.create_task(self._background_validation_loop()))
        logger.info(f"🚀 [MAINTENANCE] Started {len(self._tasks)} background tasks")

    async def stop(self):
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        logger.info("🛑 [MAINTENANCE] Background tasks stopped")

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def get_status(self) -> Dict[str, Any]:
        return {
            'running': self.running,
            'sweepInterval': self.sweep_interval,
            'backgroundValidationInterval': self.background_validation_interval,
            'lastSweep': self.last_sweep,
        }
