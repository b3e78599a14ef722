"""
License validation middleware and feature gating.
Validates the tenant's license token on every request that is not on a skip
path and attaches the result as ``request.state.license_info``.
"""

import logging
from typing import Iterable, Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response

from utils.exceptions import (
    FeatureNotLicensedError,
    LicenseError,
    LicenseRequiredError,
    LicenseValidationFault,
)

logger = logging.getLogger(__name__)

LICENSE_TOKEN_HEADER = "x-license-token"
TENANT_ID_HEADER = "x-tenant-id"


def resolve_tenant_id(request: Request) -> Optional[str]:
    """Tenant set by upstream auth, else the X-Tenant-ID header, else ``?tenantId=``."""
    tenant_id = getattr(request.state, "tenant_id", None)
    if not tenant_id:
        tenant_id = request.headers.get(TENANT_ID_HEADER) or request.query_params.get("tenantId")
    return tenant_id or None


def license_error_response(error: LicenseError) -> JSONResponse:
    headers = None
    retry_after = getattr(error, "retry_after", None)
    if retry_after is not None:
        headers = {"Retry-After": str(retry_after)}
    return JSONResponse(status_code=error.status_code, content=error.to_response(), headers=headers)


class LicenseValidationMiddleware(BaseHTTPMiddleware):
    """
    Per-request license validation through the ``LicenseGateway``.

    Requests on a skip path, or with no resolvable tenant, pass through
    untouched. License failures are answered directly with their status and
    code; unexpected faults become 500 LICENSE_VALIDATION_ERROR.
    """

    def __init__(self, app, skip_paths: Iterable[str] = ()):
        super().__init__(app)
        self.skip_paths = tuple(p.rstrip("/") for p in skip_paths if p)
        logger.info(f"🔐 [LICENSE] Validation middleware initialized ({len(self.skip_paths)} skip paths)")

    def _should_skip(self, path: str) -> bool:
        return any(path == p or path.startswith(p + "/") for p in self.skip_paths)

    async def dispatch(self, request: Request, call_next) -> Response:
        if self._should_skip(request.url.path):
            return await call_next(request)

        tenant_id = resolve_tenant_id(request)
        if not tenant_id:
            return await call_next(request)

        token = request.headers.get(LICENSE_TOKEN_HEADER)
        try:
            gateway = request.app.state.container.gateway
            result = await gateway.validate(tenant_id, token)
        except LicenseError as e:
            logger.warning(f"⚠️ [LICENSE] Request denied for tenant {tenant_id}: {e.error_code}")
            return license_error_response(e)
        except Exception as e:
            logger.error(f"❌ [LICENSE] Unexpected validation error for tenant {tenant_id}: {e}", exc_info=True)
            return license_error_response(LicenseValidationFault())

        request.state.license_info = result.to_context()
        return await call_next(request)


def require_feature(feature_name: str, optional: bool = False):
    """
    Dependency gating a route on one licensed feature.

    With ``optional=True`` the request always proceeds and
    ``request.state.feature_available`` tells the handler whether the feature
    may be used.
    """

    async def dependency(request: Request) -> bool:
        license_info = getattr(request.state, "license_info", None)

        if not license_info or not license_info.get("valid"):
            if optional:
                request.state.feature_available = False
                request.state.license_restricted = True
                return False
            raise LicenseRequiredError(
                "Valid license required for this feature",
                context={"feature": feature_name},
            )

        features = license_info.get("features") or []
        if feature_name not in features:
            if optional:
                request.state.feature_available = False
                request.state.license_restricted = True
                return False
            raise FeatureNotLicensedError(
                f"Feature '{feature_name}' is not included in your license",
                context={"feature": feature_name, "availableFeatures": list(features)},
            )

        request.state.feature_available = True
        return True

    return dependency
