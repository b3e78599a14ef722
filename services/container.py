"""
Service container.
Builds the gateway, module validator, detectors and dispatch from settings;
every collaborator can be overridden, which is how tests inject fakes.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx
from redis.asyncio import Redis

from caching.rate_limit_cache import RateLimitCache
from caching.validation_cache import ValidationCache
from config import Settings
from monitoring.logger import SecurityAuditLogger
from monitoring.metrics import MetricsCollector, metrics_collector
from repositories.license_repository import (
    InMemoryLicenseRepository,
    InMemoryUsageRepository,
    LicenseRepository,
    UsageRepository,
)
from security.attack_pattern_analysis import AttackPatternAnalysisEngine
from services.license_authority_client import LicenseAuthorityClient, is_transient
from services.license_gateway import LicenseGateway
from services.license_validator import LicenseValidator
from services.maintenance import MaintenanceScheduler
from services.violation_dispatcher import AuditLogSink, InMemoryViolationStore, ViolationDispatcher, ViolationSink
from utils.retry import RetryPolicy
from utils.time_window import Clock, system_clock

logger = logging.getLogger(__name__)


def create_redis_client(settings: Settings) -> Optional[Redis]:
    """Redis client for the second cache layer, or None when not configured."""
    if not settings.redis_enabled:
        logger.info("📝 [CONTAINER] No Redis URL configured, license cache is memory only")
        return None
    client = Redis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        socket_connect_timeout=settings.redis_timeout,
        socket_timeout=settings.redis_timeout,
    )
    logger.info("✅ [CONTAINER] Redis cache layer enabled")
    return client


@dataclass
class ServiceContainer:
    settings: Settings
    metrics: MetricsCollector
    audit_logger: SecurityAuditLogger
    gateway: LicenseGateway
    validator: LicenseValidator
    module_rate_limiter: RateLimitCache
    engine: AttackPatternAnalysisEngine
    dispatcher: ViolationDispatcher
    violation_store: InMemoryViolationStore
    scheduler: MaintenanceScheduler
    redis_client: Any = None

    @classmethod
    def build(cls,
              settings: Settings,
              license_repository: Optional[LicenseRepository] = None,
              usage_repository: Optional[UsageRepository] = None,
              http_client: Optional[httpx.AsyncClient] = None,
              redis_client: Any = None,
              notifier: Optional[ViolationSink] = None,
              metrics: Optional[MetricsCollector] = None,
              clock: Clock = system_clock) -> "ServiceContainer":
        metrics = metrics or metrics_collector
        audit_logger = SecurityAuditLogger(log_file=settings.security_audit_log_file)
        if redis_client is None:
            redis_client = create_redis_client(settings)

        client = LicenseAuthorityClient(
            base_url=settings.license_server_url,
            api_key=settings.license_server_api_key,
            timeout=settings.license_request_timeout,
            user_agent=settings.license_user_agent,
            machine_id=settings.machine_id,
            http_client=http_client,
            metrics=metrics.license_metrics,
        )
        cache = ValidationCache(
            fresh_ttl=settings.license_cache_ttl,
            offline_grace=settings.license_offline_grace,
            max_entries=settings.license_cache_max_entries,
            redis_client=redis_client,
            clock=clock,
        )
        retry_policy = RetryPolicy(
            max_attempts=settings.license_max_retries,
            base_delay=settings.license_retry_base_delay,
            backoff_factor=settings.license_retry_backoff_factor,
            max_delay=settings.license_retry_max_delay,
            retryable=is_transient,
            name="license authority validation",
        )
        authority_limiter = RateLimitCache(
            window_seconds=settings.license_rate_limit_window,
            max_requests=settings.license_authority_calls_per_window,
            clock=clock,
        )
        gateway = LicenseGateway(
            client=client,
            cache=cache,
            retry_policy=retry_policy,
            authority_limiter=authority_limiter,
            metrics=metrics.license_metrics,
            validation_deadline=settings.license_validation_deadline,
            clock=clock,
        )

        validator = LicenseValidator(
            license_repository=license_repository or InMemoryLicenseRepository(),
            usage_repository=usage_repository or InMemoryUsageRepository(),
            audit_logger=audit_logger,
            metrics=metrics.license_metrics,
            cache_ttl=settings.module_license_cache_ttl,
            warning_percentage=settings.usage_warning_percentage,
            clock=clock,
        )
        module_rate_limiter = RateLimitCache(
            window_seconds=settings.license_rate_limit_window,
            max_requests=settings.license_rate_limit_max_requests,
            clock=clock,
        )

        engine = AttackPatternAnalysisEngine.from_settings(settings, metrics.security_metrics, clock)
        violation_store = InMemoryViolationStore(max_items=settings.violation_store_max_items)
        dispatcher = ViolationDispatcher(
            sinks=[AuditLogSink(audit_logger), violation_store],
            notifier=notifier,
            metrics=metrics.security_metrics,
        )

        scheduler = MaintenanceScheduler(
            gateway=gateway,
            validator=validator,
            module_rate_limiter=module_rate_limiter,
            engine=engine,
            sweep_interval=settings.maintenance_sweep_interval,
            background_validation_interval=(settings.background_validation_interval
                                            if settings.background_validation_enabled else None),
        )

        return cls(
            settings=settings,
            metrics=metrics,
            audit_logger=audit_logger,
            gateway=gateway,
            validator=validator,
            module_rate_limiter=module_rate_limiter,
            engine=engine,
            dispatcher=dispatcher,
            violation_store=violation_store,
            scheduler=scheduler,
            redis_client=redis_client,
        )

    async def close(self):
        await self.scheduler.stop()
        await self.gateway.close()
        if self.redis_client is not None:
            await self.redis_client.aclose()
