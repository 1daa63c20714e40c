# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Core record types for the gateway.

CredentialRecord is validated at the store boundary: whatever loosely-typed
JSON the store holds is normalized into a strict dataclass here, and written
back in the camelCase layout existing stores already use.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union


def now_ms() -> int:
    """Current time as epoch milliseconds."""
    return int(datetime.now(timezone.utc).timestamp() * 1000)


def iso_from_ms(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).isoformat()


def ms_from_iso(value: Optional[str]) -> Optional[int]:
    """Parse an ISO timestamp into epoch ms. Unparseable values yield None."""
    if not value or not isinstance(value, str):
        return None
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def _as_int(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        try:
            return int(float(value))
        except ValueError:
            return 0
    return 0


def _as_optional_str(value: Any) -> Optional[str]:
    if isinstance(value, str) and value:
        return value
    return None


def _as_bool(value: Any, default: bool = True) -> bool:
    """Same truthy strings as env_bool; anything else that is not a bool or number is the default."""
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    if isinstance(value, (bool, int, float)):
        return bool(value)
    return default


def _as_token(data: Dict[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"Credential field '{key}' must be a string")
    return value


# Serialized (store) key -> dataclass attribute
_FIELD_MAP = {
    "label": "label",
    "accessToken": "access_token",
    "refreshToken": "refresh_token",
    "expiresAt": "expires_at",
    "enabled": "enabled",
    "useCount": "use_count",
    "errorCount": "error_count",
    "lastUsed": "last_used",
    "lastErrorAt": "last_error_at",
    "lastRefreshed": "last_refreshed",
    "scopes": "scopes",
    "subscriptionType": "subscription_type",
    "rateLimitTier": "rate_limit_tier",
    "addedAt": "added_at",
    "addedBy": "added_by",
}


@dataclass
class CredentialRecord:
    """One upstream OAuth identity stored under a unique label."""

    label: str
    access_token: str = ""
    refresh_token: str = ""
    expires_at: int = 0
    enabled: bool = True
    use_count: int = 0
    error_count: int = 0
    last_used: Optional[str] = None
    last_error_at: Optional[str] = None
    last_refreshed: Optional[str] = None
    scopes: List[str] = field(default_factory=list)
    subscription_type: str = "unknown"
    rate_limit_tier: str = "default"
    added_at: Optional[str] = None
    added_by: str = "unknown"

    def is_expired(self, at_ms: int, buffer_ms: int = 0) -> bool:
        """An unset or zero expiry counts as already expired."""
        if not self.expires_at or self.expires_at <= 0:
            return True
        return self.expires_at <= at_ms + buffer_ms

    def remaining_minutes(self, at_ms: int) -> Optional[int]:
        if not self.expires_at:
            return None
        return round((self.expires_at - at_ms) / 60000)

    @property
    def uses_oauth_token(self) -> bool:
        return self.access_token.startswith("sk-ant-oat")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CredentialRecord":
        if not isinstance(data, dict):
            raise ValueError("Credential record must be a JSON object")

        label = data.get("label")
        if not isinstance(label, str) or not label.strip():
            raise ValueError("Credential record is missing a label")

        scopes = data.get("scopes")
        if not isinstance(scopes, list):
            scopes = []

        return cls(
            label=label.strip(),
            access_token=_as_token(data, "accessToken"),
            refresh_token=_as_token(data, "refreshToken"),
            expires_at=_as_int(data.get("expiresAt")),
            enabled=_as_bool(data.get("enabled")),
            use_count=_as_int(data.get("useCount")),
            error_count=_as_int(data.get("errorCount")),
            last_used=_as_optional_str(data.get("lastUsed")),
            last_error_at=_as_optional_str(data.get("lastErrorAt")),
            last_refreshed=_as_optional_str(data.get("lastRefreshed")),
            scopes=[str(s) for s in scopes],
            subscription_type=data.get("subscriptionType") or "unknown",
            rate_limit_tier=data.get("rateLimitTier") or "default",
            added_at=_as_optional_str(data.get("addedAt")),
            added_by=data.get("addedBy") or "unknown",
        )

    def to_dict(self) -> Dict[str, Any]:
        return {key: getattr(self, attr) for key, attr in _FIELD_MAP.items()}

    def to_oauth_export(self) -> Dict[str, Any]:
        """Full credential in the `claudeAiOauth` export layout, for backups."""
        return {
            "claudeAiOauth": {
                "accessToken": self.access_token,
                "refreshToken": self.refresh_token,
                "expiresAt": self.expires_at,
                "scopes": list(self.scopes),
                "subscriptionType": self.subscription_type,
                "rateLimitTier": self.rate_limit_tier,
            }
        }


@dataclass
class GlobalUsageStats:
    total_requests: int = 0
    today: Optional[str] = None
    today_requests: int = 0

    def increment(self, at_ms: Optional[int] = None) -> None:
        at_ms = now_ms() if at_ms is None else at_ms
        today = datetime.fromtimestamp(at_ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d")
        self.total_requests += 1
        if self.today == today:
            self.today_requests += 1
        else:
            self.today = today
            self.today_requests = 1

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "GlobalUsageStats":
        if not isinstance(data, dict):
            return cls()
        return cls(
            total_requests=_as_int(data.get("totalRequests")),
            today=_as_optional_str(data.get("today")),
            today_requests=_as_int(data.get("todayRequests")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalRequests": self.total_requests,
            "today": self.today,
            "todayRequests": self.today_requests,
        }


# =============================================================================
# Refresh outcomes
# =============================================================================


@dataclass(frozen=True)
class RefreshSuccess:
    access_token: str
    refresh_token: Optional[str]
    expires_in: int


@dataclass(frozen=True)
class RefreshTransientError:
    """Network failure, timeout or 5xx. The credential may be retried later."""

    detail: str


@dataclass(frozen=True)
class RefreshPermanentError:
    """The refresh token was rejected. The credential must be disabled."""

    detail: str


RefreshOutcome = Union[RefreshSuccess, RefreshTransientError, RefreshPermanentError]


@dataclass
class RefreshReport:
    """Structured result of refreshing one stored credential."""

    label: str
    outcome: RefreshOutcome
    expires_at: Optional[int] = None
    disabled: bool = False

    @property
    def success(self) -> bool:
        return isinstance(self.outcome, RefreshSuccess)

    @property
    def error(self) -> Optional[str]:
        if isinstance(self.outcome, (RefreshTransientError, RefreshPermanentError)):
            return self.outcome.detail
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "label": self.label,
            "success": self.success,
            "expiresAt": self.expires_at,
            "disabled": self.disabled,
            "error": self.error,
        }


@dataclass
class SweepResult:
    checked: int = 0
    refreshed: int = 0
    failed: int = 0
    skipped: int = 0
    disabled: int = 0
    reports: List[RefreshReport] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "checked": self.checked,
            "refreshed": self.refreshed,
            "failed": self.failed,
            "skipped": self.skipped,
            "disabled": self.disabled,
        }
