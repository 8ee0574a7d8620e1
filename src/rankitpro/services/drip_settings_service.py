"""Drip Settings Service — per-company review follow-up configuration."""
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rankitpro.domain.models import Company, ReviewFollowUpSettings
from rankitpro.domain.schemas import ReviewSettingsIn, ReviewSettingsUpdate

logger = logging.getLogger(__name__)


class CompanyNotFoundError(Exception):
    """Raised when settings are requested for an unknown company."""

    def __init__(self, company_id: str):
        self.company_id = company_id
        super().__init__(f"Company not found: {company_id}")


def _settings_to_dict(settings: ReviewFollowUpSettings) -> dict:
    return ReviewSettingsIn.model_validate(settings, from_attributes=True).model_dump()


def default_settings(company_id: str) -> ReviewFollowUpSettings:
    """Unsaved settings row carrying the platform defaults."""
    values = ReviewSettingsIn().model_dump(mode="python")
    return ReviewFollowUpSettings(company_id=company_id, **values)


class DripSettingsService:
    """Reads and writes ReviewFollowUpSettings rows."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_company_settings(
        self, company_id: str, create: bool = True
    ) -> ReviewFollowUpSettings | None:
        """Settings for a company, creating the defaults on first read when ``create`` is set."""
        result = await self.db.execute(
            select(ReviewFollowUpSettings).where(ReviewFollowUpSettings.company_id == company_id)
        )
        settings = result.scalar_one_or_none()
        if settings is not None or not create:
            return settings

        if await self.db.get(Company, company_id) is None:
            raise CompanyNotFoundError(company_id)

        settings = default_settings(company_id)
        self.db.add(settings)
        await self.db.flush()
        await self.db.refresh(settings)
        logger.info("Created default review follow-up settings for company %s", company_id)
        return settings

    async def update_company_settings(
        self, company_id: str, changes: ReviewSettingsUpdate
    ) -> ReviewFollowUpSettings:
        """Merge ``changes`` onto the current settings, validate, and save.

        Raises pydantic.ValidationError if the merged settings are invalid.
        """
        settings = await self.get_company_settings(company_id)
        merged = _settings_to_dict(settings)
        merged.update(changes.model_dump(exclude_unset=True))
        validated = ReviewSettingsIn.model_validate(merged)

        for key, value in validated.model_dump(mode="python").items():
            setattr(settings, key, value)

        await self.db.commit()
        await self.db.refresh(settings)
        logger.info("Updated review follow-up settings for company %s", company_id)
        return settings

    async def active_settings(self) -> list[ReviewFollowUpSettings]:
        """All active company configurations (the scheduler's work list)."""
        result = await self.db.execute(
            select(ReviewFollowUpSettings).where(ReviewFollowUpSettings.is_active == True)  # noqa: E712
        )
        return list(result.scalars().all())
