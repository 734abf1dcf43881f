"""Session and execution context models."""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional


@dataclass
class UserSession:
    """Authenticated caller as resolved from an API key."""
    user_id: str
    company_id: Optional[str] = None
    active_tenant_id: Optional[str] = None
    team_name: Optional[str] = None
    full_name: Optional[str] = None
    email: Optional[str] = None
    base_currency: Optional[str] = None
    locale: Optional[str] = None
    timezone: Optional[str] = None


@dataclass(frozen=True)
class ExecutionContext:
    """
    Immutable per-request context.

    Built once from the authenticated session and never from model output.
    Every tool query is scoped with `tenant_id`.
    """
    tenant_id: str
    user_id: str  # "{raw_user_id}:{tenant_id}"
    conversation_id: str
    base_currency: str
    locale: str
    timezone: str
    current_datetime: datetime
    company_name: Optional[str] = None
    full_name: Optional[str] = None

    @property
    def language(self) -> str:
        """Two letter language code from the locale (e.g. "sr" for "sr-RS")."""
        return self.locale.split("-")[0].split("_")[0].lower()

    def as_prompt_vars(self) -> Dict[str, str]:
        return {
            "company_name": self.company_name or "the company",
            "full_name": self.full_name or "the user",
            "tenant_id": self.tenant_id,
            "base_currency": self.base_currency,
            "locale": self.locale,
            "timezone": self.timezone,
            "current_date": self.current_datetime.strftime("%Y-%m-%d"),
            "current_time": self.current_datetime.strftime("%H:%M"),
            "current_weekday": self.current_datetime.strftime("%A"),
        }
