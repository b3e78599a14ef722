"""
License models for the HR-SM license guard.
Validation results from the remote license authority, module license documents
and the results of module access and usage limit checks.
"""
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional

from pydantic import BaseModel, Field, field_validator


class ModuleKey(str, Enum):
    """Closed set of licensable HR-SM modules."""
    CORE_HR = "hr-core"
    ATTENDANCE = "attendance"
    LEAVE = "leave"
    PAYROLL = "payroll"
    DOCUMENTS = "documents"
    REPORTS = "reports"
    TASKS = "tasks"
    SURVEYS = "surveys"
    ANNOUNCEMENTS = "announcements"
    EVENTS = "events"
    LIFE_INSURANCE = "life-insurance"
    CLINIC = "clinic"

    @classmethod
    def parse(cls, value: Any) -> "ModuleKey":
        """Coerce a raw module key, raising ValueError for unknown modules."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value))
        except ValueError:
            raise ValueError(f"Unknown module key: {value!r}")


class Tier(str, Enum):
    STARTER = "starter"
    BUSINESS = "business"
    ENTERPRISE = "enterprise"


class LimitType(str, Enum):
    EMPLOYEES = "employees"
    STORAGE = "storage"
    API_CALLS = "apiCalls"


class LicenseStatus(str, Enum):
    ACTIVE = "active"
    TRIAL = "trial"
    SUSPENDED = "suspended"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


# ============================================================================
# REMOTE LICENSE VALIDATION
# ============================================================================

@dataclass(frozen=True)
class LicenseLimits:
    """Tenant-wide limits reported by the license authority."""
    max_users: Optional[int] = None
    max_storage: Optional[int] = None
    max_api: Optional[int] = None

    def to_dict(self) -> Dict[str, Optional[int]]:
        return {
            'maxUsers': self.max_users,
            'maxStorage': self.max_storage,
            'maxAPI': self.max_api,
        }


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class LicenseValidationResult:
    """
    Outcome of a license validation for one (tenant, token) pair.

    Instances are immutable: a newer validation supersedes an older one, it
    never mutates it. ``cached`` and ``offline`` describe how this particular
    answer was served and are set on copies via ``as_cached``/``as_offline``.
    """
    valid: bool
    features: FrozenSet[str] = field(default_factory=frozenset)
    expires_at: Optional[str] = None
    license_type: Optional[str] = None
    limits: LicenseLimits = field(default_factory=LicenseLimits)
    cached_at: float = 0.0
    cached: bool = False
    offline: bool = False

    @classmethod
    def from_authority(cls, payload: Mapping[str, Any], cached_at: float) -> "LicenseValidationResult":
        """Build a result from a successful authority response body."""
        features = payload.get('features') or []
        if isinstance(features, str):
            features = [features]
        elif not isinstance(features, Iterable):
            features = []

        limits = payload.get('limits') if isinstance(payload.get('limits'), Mapping) else payload
        return cls(
            valid=bool(payload.get('valid')),
            features=frozenset(str(f) for f in features),
            expires_at=payload.get('expiresAt'),
            license_type=payload.get('licenseType'),
            limits=LicenseLimits(
                max_users=_as_int(limits.get('maxUsers')),
                max_storage=_as_int(limits.get('maxStorage')),
                max_api=_as_int(limits.get('maxAPI')),
            ),
            cached_at=cached_at,
        )

    def as_cached(self) -> "LicenseValidationResult":
        return replace(self, cached=True, offline=False)

    def as_offline(self) -> "LicenseValidationResult":
        return replace(self, cached=True, offline=True)

    def to_context(self) -> Dict[str, Any]:
        """Serialize for ``request.state.license_info``."""
        context: Dict[str, Any] = {
            'valid': self.valid,
            'features': sorted(self.features),
            'expiresAt': self.expires_at,
            'licenseType': self.license_type,
            'limits': self.limits.to_dict(),
            'cached': self.cached,
        }
        if self.offline:
            context['offline'] = True
        return context

    def to_cache_dict(self) -> Dict[str, Any]:
        """JSON-safe form stored in the external cache layer."""
        return {
            'valid': self.valid,
            'features': sorted(self.features),
            'expiresAt': self.expires_at,
            'licenseType': self.license_type,
            'limits': self.limits.to_dict(),
            'cachedAt': self.cached_at,
        }

    @classmethod
    def from_cache_dict(cls, data: Mapping[str, Any]) -> "LicenseValidationResult":
        return cls.from_authority(data, cached_at=float(data.get("cachedAt") or 0.0))


# ============================================================================
# MODULE LICENSE DOCUMENTS
# ============================================================================

class ModuleEntitlement(BaseModel):
    """One module's entry in a tenant license document."""
    enabled: bool = False
    tier: Tier = Tier.STARTER
    limits: Dict[LimitType, Optional[int]] = Field(default_factory=dict)
    expires_at: Optional[datetime] = Field(default=None, alias="expiresAt")
    activated_at: Optional[datetime] = Field(default=None, alias="activatedAt")

    model_config = {"populate_by_name": True, "use_enum_values": False}

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return expires_at < now

    def limits_dict(self) -> Dict[str, Optional[int]]:
        return {limit_type.value: value for limit_type, value in self.limits.items()}


class LicenseDocument(BaseModel):
    """
    A tenant's module license document.

    Module keys are validated against ``ModuleKey`` when the document is
    loaded; an unknown module is a validation error, not a silent deny.
    """
    tenant_id: str = Field(..., alias="tenantId", min_length=1)
    status: LicenseStatus = LicenseStatus.ACTIVE
    expires_at: Optional[datetime] = Field(default=None, alias="expiresAt")
    modules: Dict[ModuleKey, ModuleEntitlement] = Field(default_factory=dict)

    model_config = {"populate_by_name": True}

    @field_validator('modules', mode='before')
    @classmethod
    def validate_module_keys(cls, value):
        """Reject module keys outside the closed module set."""
        if value is None:
            return {}
        if not isinstance(value, Mapping):
            raise ValueError("modules must be a mapping of module key to entitlement")
        return {ModuleKey.parse(key): entitlement for key, entitlement in value.items()}

    def get_module(self, module_key: ModuleKey) -> Optional[ModuleEntitlement]:
        return self.modules.get(module_key)

    @property
    def is_expired(self) -> bool:
        return self.status == LicenseStatus.EXPIRED


# ============================================================================
# MODULE CHECK RESULTS
# ============================================================================

@dataclass(frozen=True)
class ModuleValidationResult:
    """Result of a module access check."""
    valid: bool
    module_key: ModuleKey
    tier: Optional[Tier] = None
    limits: Dict[str, Optional[int]] = field(default_factory=dict)
    expires_at: Optional[datetime] = None
    reason: Optional[str] = None
    error: Optional[str] = None
    bypassed: bool = False

    def to_context(self) -> Dict[str, Any]:
        """Serialize for ``request.state.module_license``."""
        return {
            'moduleKey': self.module_key.value,
            'tier': self.tier.value if self.tier else None,
            'valid': self.valid,
            'limits': dict(self.limits),
            'expiresAt': self.expires_at.isoformat() if self.expires_at else None,
        }


@dataclass(frozen=True)
class UsageLimitResult:
    """Result of a usage limit check."""
    allowed: bool
    limit_type: LimitType
    current_usage: int = 0
    limit: Optional[int] = None
    percentage: Optional[int] = None
    projected_usage: Optional[int] = None
    projected_percentage: Optional[int] = None
    is_approaching_limit: bool = False
    reason: Optional[str] = None
    error: Optional[str] = None
    details: Optional[str] = None

    def to_context(self) -> Dict[str, Any]:
        """Serialize for ``request.state.usage_limit``."""
        return {
            'limitType': self.limit_type.value,
            'currentUsage': self.current_usage,
            'limit': self.limit,
            'percentage': self.percentage,
            'isApproachingLimit': self.is_approaching_limit,
        }
