"""
License and usage lookups.
Can import from: models, shared
Must NOT import from: services, routers
"""

from .license_repository import (
    LicenseRepository,
    UsageRepository,
    InMemoryLicenseRepository,
    InMemoryUsageRepository
)

__all__ = [
    "LicenseRepository",
    "UsageRepository",
    "InMemoryLicenseRepository",
    "InMemoryUsageRepository"
]
