"""
Module-scoped license dependencies.
Checks a tenant's module license document (not the remote authority) and
usage limits before a route runs.
"""

import logging
from typing import Any, Callable, Dict, Iterable, List, Optional

from fastapi import Request

from middleware.license_validation import resolve_tenant_id
from models.license import LimitType, ModuleKey, ModuleValidationResult
from utils.exceptions import (
    LicenseError,
    LicenseExpiredError,
    LicenseRateLimitError,
    LimitCheckFailedError,
    ModuleNotLicensedError,
    TenantIdRequiredError,
    UsageLimitExceededError,
)

logger = logging.getLogger(__name__)


def _container(request: Request):
    return request.app.state.container


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _request_info(request: Request) -> Dict[str, Any]:
    return {
        'ipAddress': _client_ip(request),
        'userAgent': request.headers.get('user-agent'),
        'path': request.url.path,
        'method': request.method,
    }


def upgrade_url(module_key: ModuleKey, error: Optional[str]) -> str:
    if error == 'LICENSE_EXPIRED':
        return f"/settings/license?action=renew&module={module_key.value}"
    return f"/pricing?module={module_key.value}"


def module_denial(result: ModuleValidationResult) -> LicenseError:
    """Map a failed module validation to the error returned to the client."""
    context = {
        'moduleKey': result.module_key.value,
        'upgradeUrl': upgrade_url(result.module_key, result.error),
    }
    if result.error == 'LICENSE_EXPIRED':
        context['expiresAt'] = result.expires_at.isoformat() if result.expires_at else None
        return LicenseExpiredError(result.reason or 'License has expired', context=context)
    return ModuleNotLicensedError(result.reason or 'Module not licensed', error_code=result.error,
                                  context=context)


def _bypass_context(module_key: ModuleKey) -> Dict[str, Any]:
    return {'moduleKey': module_key.value, 'tier': None, 'valid': True, 'limits': {}, 'expiresAt': None}


async def _check_module(request: Request, module_key: ModuleKey, enforce_rate_limit: bool = True) -> ModuleValidationResult:
    tenant_id = resolve_tenant_id(request)
    if not tenant_id:
        raise TenantIdRequiredError(
            "Tenant ID is required for license validation",
            context={'moduleKey': module_key.value},
        )

    container = _container(request)
    if enforce_rate_limit:
        budget = container.module_rate_limiter.check(f"{tenant_id}:{_client_ip(request)}")
        if not budget.allowed:
            container.metrics.license_metrics.record_rate_limit_hit('module')
            logger.warning(f"⚠️ [MODULE-LICENSE] Rate limit exceeded for {tenant_id}:{_client_ip(request)}")
            raise LicenseRateLimitError(
                "Too many license validation requests. Please try again later.",
                retry_after=budget.retry_after,
                context={'moduleKey': module_key.value},
            )

    return await container.validator.validate_module_access(tenant_id, module_key, _request_info(request))


def require_module_license(module_key: Any):
    """Dependency denying the route unless the tenant's license covers ``module_key``."""
    module_key = ModuleKey.parse(module_key)

    async def dependency(request: Request) -> ModuleValidationResult:
        if module_key == ModuleKey.CORE_HR:
            request.state.module_license = _bypass_context(module_key)
            return ModuleValidationResult(valid=True, module_key=module_key, bypassed=True)

        result = await _check_module(request, module_key)
        if not result.valid:
            raise module_denial(result)

        request.state.module_license = result.to_context()
        return result

    return dependency


def require_multiple_module_licenses(module_keys: Iterable[Any]):
    """Every module must validate; the first failure is reported."""
    module_keys: List[ModuleKey] = [ModuleKey.parse(k) for k in module_keys]

    async def dependency(request: Request) -> Dict[str, Dict[str, Any]]:
        validated: Dict[str, Dict[str, Any]] = {}
        checked_rate_limit = False
        for module_key in module_keys:
            if module_key == ModuleKey.CORE_HR:
                validated[module_key.value] = _bypass_context(module_key)
                continue

            result = await _check_module(request, module_key, enforce_rate_limit=not checked_rate_limit)
            checked_rate_limit = True
            if not result.valid:
                error = module_denial(result)
                error.context.update({
                    'requiredModules': [k.value for k in module_keys],
                    'failedModule': module_key.value,
                })
                raise error
            validated[module_key.value] = result.to_context()

        request.state.module_licenses = validated
        return validated

    return dependency


def attach_license_info(module_key: Any):
    """Non-blocking: attaches module license info when available, never denies."""
    module_key = ModuleKey.parse(module_key)

    async def dependency(request: Request) -> Optional[Dict[str, Any]]:
        if module_key == ModuleKey.CORE_HR:
            request.state.module_license = _bypass_context(module_key)
            return request.state.module_license

        tenant_id = resolve_tenant_id(request)
        if not tenant_id:
            return None
        try:
            result = await _container(request).validator.validate_module_access(
                tenant_id, module_key, _request_info(request)
            )
        except Exception as e:
            logger.warning(f"⚠️ [MODULE-LICENSE] Could not attach license info for {module_key.value}: {e}")
            return None

        context = result.to_context()
        if not result.valid:
            context['reason'] = result.reason
            context['error'] = result.error
        request.state.module_license = context
        return context

    return dependency


def check_usage_limit(module_key: Any, limit_type: Any,
                      amount_extractor: Optional[Callable[[Request], int]] = None):
    """
    Dependency denying the route when the requested amount would push usage
    past the module limit. ``amount_extractor`` reads the requested amount
    from the request; it defaults to zero.
    """
    module_key = ModuleKey.parse(module_key)
    limit_type = LimitType(limit_type)

    async def dependency(request: Request):
        if module_key == ModuleKey.CORE_HR:
            return None

        tenant_id = resolve_tenant_id(request)
        if not tenant_id:
            raise TenantIdRequiredError(
                "Tenant ID is required for license validation",
                context={'moduleKey': module_key.value},
            )

        requested = int(amount_extractor(request)) if amount_extractor else 0
        result = await _container(request).validator.check_limit(tenant_id, module_key, limit_type, requested)

        if result.error == 'LIMIT_CHECK_FAILED':
            raise LimitCheckFailedError(
                "Failed to check usage limits",
                context={'moduleKey': module_key.value, 'limitType': limit_type.value},
            )
        if result.error == 'MODULE_NOT_LICENSED':
            raise ModuleNotLicensedError(
                result.reason or 'Module not licensed',
                context={'moduleKey': module_key.value,
                         'upgradeUrl': upgrade_url(module_key, result.error)},
            )
        if not result.allowed:
            raise UsageLimitExceededError(
                f"Usage limit exceeded for {limit_type.value}",
                context={
                    'moduleKey': module_key.value,
                    'limitType': limit_type.value,
                    'currentUsage': result.current_usage,
                    'limit': result.limit,
                    'requestedAmount': requested,
                    'projectedUsage': result.projected_usage,
                    'upgradeUrl': upgrade_url(module_key, result.error),
                },
            )

        request.state.usage_limit = result.to_context()
        return result

    return dependency
