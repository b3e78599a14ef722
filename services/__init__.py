"""
Business logic layer.
Can import from: repositories, models, shared
Must NOT import from: routers
"""

from .container import ServiceContainer
from .license_authority_client import LicenseAuthorityClient
from .license_gateway import LicenseGateway
from .license_validator import LicenseValidator
from .violation_dispatcher import AuditLogSink, ViolationDispatcher, ViolationSink

__all__ = [
    "AuditLogSink",
    "LicenseAuthorityClient",
    "LicenseGateway",
    "LicenseValidator",
    "ServiceContainer",
    "ViolationDispatcher",
    "ViolationSink",
]
