"""
License validation gateway.
Validates (tenant, token) pairs against the remote license authority with a
freshness cache, offline grace, bounded retries and single-flight per key.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from caching.rate_limit_cache import RateLimitCache
from caching.validation_cache import ValidationCache
from models.license import LicenseValidationResult
from monitoring.metrics import LicenseMetrics
from services.license_authority_client import LicenseAuthorityClient
from utils.exceptions import (
    AuthorityResponseError,
    AuthorityTransportError,
    LicenseInvalidError,
    LicenseRequiredError,
    LicenseServerUnavailableError,
    RetryExhaustedError,
)
from utils.retry import RetryPolicy
from utils.time_window import Clock, system_clock

logger = logging.getLogger(__name__)


class LicenseGateway:
    """
    Per-request license validation.

    Lookup order for a (tenant, token) pair:

    1. fresh cache entry (younger than the freshness window) -> ``cached=True``
    2. authority call through the retry policy, shared by every concurrent
       request for the same key -> ``cached=False``
    3. when the authority cannot answer: cache entry younger than the offline
       grace window -> ``offline=True``, otherwise LICENSE_SERVER_UNAVAILABLE

    An authority verdict of ``valid: false`` is final and never falls back to
    the cache.
    """

    def __init__(self,
                 client: LicenseAuthorityClient,
                 cache: ValidationCache,
                 retry_policy: RetryPolicy,
                 authority_limiter: Optional[RateLimitCache] = None,
                 metrics: Optional[LicenseMetrics] = None,
                 validation_deadline: float = 20.0,
                 clock: Clock = system_clock):
        self.client = client
        self.cache = cache
        self.retry_policy = retry_policy
        self.authority_limiter = authority_limiter
        self.metrics = metrics
        self.validation_deadline = validation_deadline
        self.clock = clock

        self._inflight: Dict[str, asyncio.Task] = {}
        # tenant -> last token seen, feeds background re-validation
        self._recent_tenants: Dict[str, str] = {}

        self._background = {
            'isRunning': False,
            'lastRun': None,
            'validatedTenants': 0,
            'errors': 0,
        }

    def _record(self, outcome: str):
        if self.metrics is not None:
            self.metrics.record_validation(outcome)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    async def validate(self, tenant_id: str, license_token: Optional[str],
                       force_refresh: bool = False) -> LicenseValidationResult:
        """
        Validate ``license_token`` for ``tenant_id``.

        ``force_refresh`` skips the freshness cache (background re-validation);
        the offline fallback still applies.

        Raises:
            LicenseRequiredError: no token.
            LicenseInvalidError: the authority denied the license (its error
                code is kept) or answered with a malformed body.
            LicenseServerUnavailableError: the authority cannot answer and no
                result inside the offline grace window exists.
        """
        if not license_token:
            self._record('missing_token')
            raise LicenseRequiredError(
                "Valid license required to access this service",
                context={'tenantId': tenant_id},
            )

        self._recent_tenants[tenant_id] = license_token

        cached = None if force_refresh else await self.cache.get_fresh(tenant_id, license_token)
        if cached is not None:
            if self.metrics is not None:
                self.metrics.record_cache_lookup('hit')
            self._record('cached')
            logger.debug(f"[LICENSE] Cache hit for tenant {tenant_id}")
            return cached

        if self.metrics is not None:
            self.metrics.record_cache_lookup('miss')

        task = self._get_or_start_fetch(tenant_id, license_token)
        try:
            result = await asyncio.wait_for(asyncio.shield(task), timeout=self.validation_deadline)
        except asyncio.TimeoutError:
            logger.warning(
                f"⚠️ [LICENSE] Validation for tenant {tenant_id} exceeded {self.validation_deadline}s deadline"
            )
            return await self._serve_offline(tenant_id, license_token, "License validation timed out")
        except (RetryExhaustedError, AuthorityTransportError) as e:
            return await self._serve_offline(tenant_id, license_token, str(e))
        except AuthorityResponseError as e:
            self._record('malformed')
            logger.error(f"❌ [LICENSE] Malformed authority response for tenant {tenant_id}: {e.body!r}")
            raise LicenseInvalidError(
                "License server returned an invalid response",
                context={'tenantId': tenant_id},
            )

        self._record('valid')
        return result

    def _get_or_start_fetch(self, tenant_id: str, license_token: str) -> asyncio.Task:
        """Join the in-flight authority call for this key, or start one."""
        key = self.cache.make_key(tenant_id, license_token)
        task = self._inflight.get(key)
        if task is not None and not task.done():
            return task

        task = asyncio.create_task(self._fetch(tenant_id, license_token))
        self._inflight[key] = task

        def _finished(done: asyncio.Task):
            if self._inflight.get(key) is done:
                del self._inflight[key]
            # Mark the outcome retrieved even when every waiter gave up
            if not done.cancelled():
                done.exception()

        task.add_done_callback(_finished)
        return task

    async def _fetch(self, tenant_id: str, license_token: str) -> LicenseValidationResult:
        """
        Authority round trip for one key. Runs detached from the requests that
        wait on it so the cache is populated even if they are cancelled.
        """
        if self.authority_limiter is not None:
            budget = self.authority_limiter.check(f"authority:{tenant_id}")
            if not budget.allowed:
                if self.metrics is not None:
                    self.metrics.record_rate_limit_hit('authority')
                logger.warning(f"⚠️ [LICENSE] Authority call budget exhausted for tenant {tenant_id}")
                raise AuthorityTransportError(
                    "License authority call budget exhausted for tenant",
                    transient=False,
                )

        body = await self.retry_policy.call(self.client.validate, license_token)

        if body.get('valid') is not True:
            self._record('denied')
            error_code = body.get('error') or 'LICENSE_INVALID'
            reason = body.get('reason') or 'License validation failed'
            logger.warning(f"❌ [LICENSE] Authority denied license for tenant {tenant_id}: {error_code}")
            raise LicenseInvalidError(
                reason,
                error_code=error_code,
                context={'tenantId': tenant_id, 'expiresAt': body.get('expiresAt')},
            )

        result = LicenseValidationResult.from_authority(body, cached_at=self.clock())
        await self.cache.put(tenant_id, license_token, result)
        logger.info(f"✅ [LICENSE] License validated for tenant {tenant_id}")
        return result

    async def _serve_offline(self, tenant_id: str, license_token: str, reason: str) -> LicenseValidationResult:
        offline = await self.cache.get_offline(tenant_id, license_token)
        if offline is not None:
            self._record('offline')
            logger.warning(f"⚠️ [LICENSE] Authority unavailable, serving offline validation for tenant {tenant_id}")
            return offline

        self._record('unavailable')
        logger.error(f"❌ [LICENSE] Authority unavailable and no offline validation for tenant {tenant_id}: {reason}")
        raise LicenseServerUnavailableError(details=reason, context={'tenantId': tenant_id})

    # ------------------------------------------------------------------
    # Background re-validation
    # ------------------------------------------------------------------

    async def run_background_validation(self) -> Dict[str, Any]:
        """
        Re-validate recently seen tenants so their cache entries stay warm.
        Failures are counted, never raised.
        """
        if self._background['isRunning']:
            logger.debug("[LICENSE] Background validation already running, skipping")
            return self.get_background_status()

        self._background['isRunning'] = True
        validated = 0
        errors = 0
        started = time.perf_counter()
        try:
            for tenant_id, token in list(self._recent_tenants.items()):
                try:
                    await self.validate(tenant_id, token, force_refresh=True)
                    validated += 1
                except Exception as e:
                    errors += 1
                    logger.warning(f"⚠️ [LICENSE] Background validation failed for tenant {tenant_id}: {e}")
        finally:
            self._background.update({
                'isRunning': False,
                'lastRun': datetime.now(timezone.utc).isoformat(),
                'validatedTenants': validated,
                'errors': errors,
            })

        logger.info(
            f"🔄 [LICENSE] Background validation finished: {validated} tenants, {errors} errors "
            f"in {time.perf_counter() - started:.2f}s"
        )
        return self.get_background_status()

    def get_background_status(self) -> Dict[str, Any]:
        return dict(self._background)

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    async def clear_cache(self, tenant_id: Optional[str] = None) -> int:
        if tenant_id is None:
            self._recent_tenants.clear()
        else:
            self._recent_tenants.pop(tenant_id, None)
        return await self.cache.clear(tenant_id)

    def sweep(self) -> int:
        removed = self.cache.sweep()
        if self.authority_limiter is not None:
            removed += self.authority_limiter.sweep()
        return removed

    def get_stats(self) -> Dict[str, Any]:
        cache_stats = self.cache.get_stats()
        return {
            'caching': cache_stats,
            'inflight': len(self._inflight),
            'backgroundValidation': self.get_background_status(),
            'configuration': {
                'licenseServerUrl': self.client.base_url,
                'cacheTTL': self.cache.fresh_ttl,
                'offlineGracePeriod': self.cache.offline_grace,
                'maxRetryAttempts': self.retry_policy.max_attempts,
                'validationDeadline': self.validation_deadline,
            },
        }

    async def close(self):
        for task in list(self._inflight.values()):
            task.cancel()
        await self.client.close()
