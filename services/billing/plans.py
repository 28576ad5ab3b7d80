"""Subscription plan policy.

The tier lives in ``profiles.subscription_tier`` and is rewritten out of
band by the billing webhook, so every gated decision re-reads it. Limits
come from the ``subscription_tiers`` row when one exists, otherwise from
the built-in defaults below.
"""

import logging
from enum import Enum

from pydantic import BaseModel

from services.invoices.repository import ProfileRepository
from services.shared.config import Settings
from services.shared.errors import PlanRestrictedError

logger = logging.getLogger(__name__)


class PlanTier(str, Enum):
    FREE = "free"
    PRO = "pro"
    ENTERPRISE = "enterprise"


EXPORT_FORMATS = ("text", "csv", "json", "excel")

DEFAULT_FILE_SIZE_LIMIT_MB = {
    PlanTier.FREE: 25,
    PlanTier.PRO: 100,
    PlanTier.ENTERPRISE: 500,
}


class PlanLimits(BaseModel):
    """Capabilities of one tier at the moment it was read."""

    tier: PlanTier
    can_merge: bool
    export_formats: tuple[str, ...]
    max_files_per_batch: int
    file_size_limit_mb: int
    monthly_export_limit: int | None = None

    @property
    def file_size_limit_bytes(self) -> int:
        return self.file_size_limit_mb * 1024 * 1024

    def allows_format(self, export_format: str) -> bool:
        return export_format in self.export_formats


class PlanService:
    """Reads the caller's current tier and derives its limits."""

    def __init__(self, profiles: ProfileRepository, settings: Settings) -> None:
        self._profiles = profiles
        self._settings = settings

    async def current_tier(self, owner_id: str) -> PlanTier:
        name = await self._profiles.get_tier_name(owner_id)
        try:
            return PlanTier((name or PlanTier.FREE.value).lower())
        except ValueError:
            logger.warning(f"Unknown subscription tier '{name}' for {owner_id}; using free")
            return PlanTier.FREE

    async def limits_for(self, owner_id: str) -> PlanLimits:
        """Current limits for the owner (never cached)."""
        tier = await self.current_tier(owner_id)
        paid = tier is not PlanTier.FREE

        size_limit = DEFAULT_FILE_SIZE_LIMIT_MB[tier]
        monthly_limit = None
        tier_row = await self._profiles.get_tier(tier.value)
        if tier_row is not None:
            size_limit = tier_row.file_size_limit_mb
            monthly_limit = tier_row.monthly_export_limit

        return PlanLimits(
            tier=tier,
            can_merge=paid,
            export_formats=EXPORT_FORMATS if paid else ("text",),
            max_files_per_batch=(
                self._settings.max_files_paid if paid else self._settings.max_files_free
            ),
            file_size_limit_mb=size_limit,
            monthly_export_limit=monthly_limit,
        )

    async def require_format(self, owner_id: str, export_format: str) -> PlanLimits:
        """Raise PlanRestrictedError if the format is not in the owner's tier."""
        limits = await self.limits_for(owner_id)
        if not limits.allows_format(export_format):
            raise PlanRestrictedError(
                f"{export_format.upper()} export is not available on the {limits.tier.value} plan."
            )
        return limits
