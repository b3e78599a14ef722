"""
Module license validation and usage limit checks.
Reads tenant license documents through the repository layer; independent of
the remote license authority.
"""

import logging
import threading
from typing import Any, Dict, Optional, Tuple

from models.license import (
    LicenseDocument,
    LimitType,
    ModuleKey,
    ModuleValidationResult,
    UsageLimitResult,
)
from monitoring.logger import SecurityAuditLogger
from monitoring.metrics import LicenseMetrics
from repositories.license_repository import LicenseRepository, UsageRepository
from utils.time_window import Clock, system_clock

logger = logging.getLogger(__name__)

# One approaching-limit audit entry per (tenant, module, limit) per day
LIMIT_WARNING_INTERVAL = 24 * 60 * 60


class LicenseValidator:
    """
    Module access and usage limit checks for a tenant.

    Successful module validations are cached per ``tenant:module`` for
    ``cache_ttl`` seconds; denials are never cached so a license fix is picked
    up on the next request.
    """

    def __init__(self,
                 license_repository: LicenseRepository,
                 usage_repository: UsageRepository,
                 audit_logger: Optional[SecurityAuditLogger] = None,
                 metrics: Optional[LicenseMetrics] = None,
                 cache_ttl: float = 300,
                 warning_percentage: int = 80,
                 clock: Clock = system_clock):
        self.license_repository = license_repository
        self.usage_repository = usage_repository
        self.audit_logger = audit_logger
        self.metrics = metrics
        self.cache_ttl = cache_ttl
        self.warning_percentage = warning_percentage
        self.clock = clock

        self._cache: Dict[str, Tuple[ModuleValidationResult, float]] = {}
        self._cache_lock = threading.Lock()
        self._last_warning: Dict[str, float] = {}

    @staticmethod
    def _cache_key(tenant_id: str, module_key: ModuleKey) -> str:
        return f"{tenant_id}:{module_key.value}"

    def _get_cached(self, tenant_id: str, module_key: ModuleKey) -> Optional[ModuleValidationResult]:
        key = self._cache_key(tenant_id, module_key)
        with self._cache_lock:
            cached = self._cache.get(key)
            if cached is None:
                return None
            result, cached_at = cached
            if self.clock() - cached_at >= self.cache_ttl:
                del self._cache[key]
                return None
            return result

    def _set_cached(self, tenant_id: str, module_key: ModuleKey, result: ModuleValidationResult):
        with self._cache_lock:
            self._cache[self._cache_key(tenant_id, module_key)] = (result, self.clock())

    def _deny(self, tenant_id: str, module_key: ModuleKey, reason: str, error: str,
              request_info: Optional[Dict[str, Any]] = None, **fields) -> ModuleValidationResult:
        if self.audit_logger is not None:
            if error == 'LICENSE_EXPIRED':
                self.audit_logger.log_license_expired(tenant_id, module_key.value, **(request_info or {}))
            else:
                self.audit_logger.log_license_validation(tenant_id, module_key.value, False, reason, request_info)
        if self.metrics is not None:
            self.metrics.record_module_check(module_key.value, error.lower())
        return ModuleValidationResult(valid=False, module_key=module_key, reason=reason, error=error, **fields)

    async def validate_module_access(self,
                                     tenant_id: str,
                                     module_key: Any,
                                     request_info: Optional[Dict[str, Any]] = None,
                                     skip_cache: bool = False) -> ModuleValidationResult:
        """
        Check whether ``tenant_id`` may use ``module_key``.

        Denials come back as results carrying an error code
        (MODULE_NOT_LICENSED, LICENSE_EXPIRED); repository failures propagate.
        """
        module_key = ModuleKey.parse(module_key)

        if module_key == ModuleKey.CORE_HR:
            return ModuleValidationResult(valid=True, module_key=module_key, bypassed=True,
                                          reason='Core HR is always enabled')

        if not skip_cache:
            cached = self._get_cached(tenant_id, module_key)
            if cached is not None:
                logger.debug(f"[MODULE-LICENSE] Cache hit for {tenant_id}:{module_key.value}")
                return cached

        document: Optional[LicenseDocument] = await self.license_repository.find_by_tenant_id(tenant_id)
        if document is None:
            return self._deny(tenant_id, module_key, 'No license found for tenant',
                              'MODULE_NOT_LICENSED', request_info)

        entitlement = document.get_module(module_key)
        if entitlement is None:
            return self._deny(tenant_id, module_key, 'Module not included in license',
                              'MODULE_NOT_LICENSED', request_info)

        if not entitlement.enabled:
            return self._deny(tenant_id, module_key, 'Module is disabled',
                              'MODULE_NOT_LICENSED', request_info)

        if document.is_expired:
            return self._deny(tenant_id, module_key, 'License has expired', 'LICENSE_EXPIRED',
                              request_info, expires_at=entitlement.expires_at)

        if entitlement.is_expired():
            return self._deny(tenant_id, module_key, 'Module license has expired', 'LICENSE_EXPIRED',
                              request_info, expires_at=entitlement.expires_at)

        result = ModuleValidationResult(
            valid=True,
            module_key=module_key,
            tier=entitlement.tier,
            limits=entitlement.limits_dict(),
            expires_at=entitlement.expires_at,
            reason='Validation successful',
        )
        self._set_cached(tenant_id, module_key, result)

        if self.audit_logger is not None:
            self.audit_logger.log_license_validation(tenant_id, module_key.value, True,
                                                     'Validation successful', request_info)
        if self.metrics is not None:
            self.metrics.record_module_check(module_key.value, 'valid')
        return result

    async def check_limit(self,
                          tenant_id: str,
                          module_key: Any,
                          limit_type: Any,
                          requested_amount: int = 0) -> UsageLimitResult:
        """
        Compare current usage (plus ``requested_amount``) with the module limit.

        A missing or zero limit means unlimited. Collaborator failures are
        reported as a LIMIT_CHECK_FAILED result.
        """
        module_key = ModuleKey.parse(module_key)
        limit_type = LimitType(limit_type)

        if module_key == ModuleKey.CORE_HR:
            return UsageLimitResult(allowed=True, limit_type=limit_type,
                                    reason='Core HR has no usage limits')

        try:
            document = await self.license_repository.find_by_tenant_id(tenant_id)
            entitlement = document.get_module(module_key) if document is not None else None
            if entitlement is None or not entitlement.enabled:
                return UsageLimitResult(allowed=False, limit_type=limit_type,
                                        reason='Module not licensed', error='MODULE_NOT_LICENSED')

            current_usage = int(await self.usage_repository.get_current_usage(tenant_id, module_key, limit_type))
        except Exception as e:
            logger.error(f"❌ [USAGE-LIMIT] Limit check failed for {tenant_id}:{module_key.value}: {e}",
                         exc_info=True)
            if self.metrics is not None:
                self.metrics.record_usage_check(limit_type.value, 'error')
            return UsageLimitResult(allowed=False, limit_type=limit_type, reason='Limit check failed',
                                    error='LIMIT_CHECK_FAILED', details=str(e))

        limit = entitlement.limits.get(limit_type)
        if not limit:
            return UsageLimitResult(allowed=True, limit_type=limit_type, current_usage=current_usage,
                                    reason='No limit configured')

        projected_usage = current_usage + requested_amount
        percentage = round(current_usage / limit * 100)
        projected_percentage = round(projected_usage / limit * 100)

        if projected_usage > limit:
            if self.audit_logger is not None:
                self.audit_logger.log_limit_exceeded(tenant_id, module_key.value, limit_type.value,
                                                     projected_usage, limit, currentUsage=current_usage,
                                                     requestedAmount=requested_amount)
            if self.metrics is not None:
                self.metrics.record_usage_check(limit_type.value, 'exceeded')
            return UsageLimitResult(
                allowed=False,
                limit_type=limit_type,
                current_usage=current_usage,
                limit=limit,
                percentage=percentage,
                projected_usage=projected_usage,
                projected_percentage=projected_percentage,
                reason='Usage limit exceeded',
                error='LIMIT_EXCEEDED',
            )

        approaching = percentage >= self.warning_percentage
        if approaching:
            self._warn_approaching(tenant_id, module_key, limit_type, current_usage, limit, percentage)

        if self.metrics is not None:
            self.metrics.record_usage_check(limit_type.value, 'warning' if approaching else 'ok')
        return UsageLimitResult(
            allowed=True,
            limit_type=limit_type,
            current_usage=current_usage,
            limit=limit,
            percentage=percentage,
            projected_usage=projected_usage,
            projected_percentage=projected_percentage,
            is_approaching_limit=approaching,
            reason='Within usage limits',
        )

    def _warn_approaching(self, tenant_id: str, module_key: ModuleKey, limit_type: LimitType,
                          current_usage: int, limit: int, percentage: int):
        key = f"{tenant_id}:{module_key.value}:{limit_type.value}"
        now = self.clock()
        last = self._last_warning.get(key)
        if last is not None and now - last < LIMIT_WARNING_INTERVAL:
            return
        self._last_warning[key] = now

        logger.warning(
            f"⚠️ [USAGE-LIMIT] Tenant {tenant_id} at {percentage}% of {limit_type.value} "
            f"limit for {module_key.value} ({current_usage}/{limit})"
        )
        if self.audit_logger is not None:
            self.audit_logger.log_limit_warning(tenant_id, module_key.value, limit_type.value,
                                                current_usage, limit, percentage)

    def invalidate_cache(self, tenant_id: str, module_key: Any = None) -> int:
        """Drop cached validations for a tenant, or for one of its modules."""
        with self._cache_lock:
            if module_key is not None:
                removed = 1 if self._cache.pop(self._cache_key(tenant_id, ModuleKey.parse(module_key)), None) else 0
            else:
                prefix = f"{tenant_id}:"
                keys = [k for k in self._cache if k.startswith(prefix)]
                for key in keys:
                    del self._cache[key]
                removed = len(keys)
        logger.debug(f"[MODULE-LICENSE] Invalidated {removed} cached validations for tenant {tenant_id}")
        return removed

    def clear_cache(self) -> int:
        with self._cache_lock:
            size = len(self._cache)
            self._cache.clear()
        logger.info(f"🧹 [MODULE-LICENSE] Validation cache cleared ({size} entries)")
        return size

    def sweep(self) -> int:
        now = self.clock()
        with self._cache_lock:
            expired = [k for k, (_, cached_at) in self._cache.items() if now - cached_at >= self.cache_ttl]
            for key in expired:
                del self._cache[key]
        stale_warnings = [k for k, t in list(self._last_warning.items()) if now - t >= LIMIT_WARNING_INTERVAL]
        for key in stale_warnings:
            self._last_warning.pop(key, None)
        return len(expired)

    def get_cache_stats(self) -> Dict[str, Any]:
        with self._cache_lock:
            size = len(self._cache)
        return {
            'size': size,
            'ttl': self.cache_ttl,
        }
