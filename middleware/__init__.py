"""
Middleware package for FastAPI application.
"""
from .error_handling import register_exception_handlers
from .license_validation import LicenseValidationMiddleware, require_feature, resolve_tenant_id
from .module_license import (
    attach_license_info,
    check_usage_limit,
    require_module_license,
    require_multiple_module_licenses,
)

__all__ = [
    "LicenseValidationMiddleware",
    "attach_license_info",
    "check_usage_limit",
    "register_exception_handlers",
    "require_feature",
    "require_module_license",
    "require_multiple_module_licenses",
    "resolve_tenant_id",
]
