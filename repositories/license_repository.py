"""
Tenant license and usage lookups.
The license guard only depends on the abstract repositories below; storage
backends plug in by subclassing them. In-memory implementations are used by
the default container and by tests.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Mapping, Optional, Tuple

from models.license import LicenseDocument, LimitType, ModuleKey

logger = logging.getLogger(__name__)


class LicenseRepository(ABC):
    """Source of tenant module license documents."""

    @abstractmethod
    async def find_by_tenant_id(self, tenant_id: str) -> Optional[LicenseDocument]:
        """Return the tenant's license document, or None when it has none."""


class UsageRepository(ABC):
    """Source of per-period module usage."""

    @abstractmethod
    async def get_current_usage(self, tenant_id: str, module_key: ModuleKey, limit_type: LimitType) -> int:
        """Usage of ``limit_type`` for the current period."""


class InMemoryLicenseRepository(LicenseRepository):
    """
    Dictionary-backed license repository.

    Documents are validated on ``save`` so unknown module keys are rejected
    at load time.
    """

    def __init__(self, documents: Optional[Mapping[str, Any]] = None):
        self._documents: Dict[str, LicenseDocument] = {}
        self._lock = asyncio.Lock()
        for document in (documents or {}).values():
            self._store(document)

    def _store(self, document: Any) -> LicenseDocument:
        if not isinstance(document, LicenseDocument):
            document = LicenseDocument.model_validate(document)
        self._documents[document.tenant_id] = document
        return document

    async def save(self, document: Any) -> LicenseDocument:
        async with self._lock:
            stored = self._store(document)
        logger.debug(f"[REPO] Stored license document for tenant {stored.tenant_id}")
        return stored

    async def delete(self, tenant_id: str) -> bool:
        async with self._lock:
            return self._documents.pop(tenant_id, None) is not None

    async def find_by_tenant_id(self, tenant_id: str) -> Optional[LicenseDocument]:
        return self._documents.get(tenant_id)


class InMemoryUsageRepository(UsageRepository):
    """Dictionary-backed usage counters keyed by (tenant, module, limit type)."""

    def __init__(self):
        self._usage: Dict[Tuple[str, ModuleKey, LimitType], int] = {}

    def set_usage(self, tenant_id: str, module_key: ModuleKey, limit_type: LimitType, value: int):
        self._usage[(tenant_id, module_key, limit_type)] = value

    async def get_current_usage(self, tenant_id: str, module_key: ModuleKey, limit_type: LimitType) -> int:
        return self._usage.get((tenant_id, module_key, limit_type), 0)
