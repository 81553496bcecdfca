from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from report_engine.database.models import Property, UserSettings
from report_engine.repositories.base_repository import BaseRepository
from report_engine.schemas.report import BrandColors, ReportContext, ReportRecord
from report_engine.schemas.sections import Tier
from report_engine.services.stores import SettingsStore

UNKNOWN_PROPERTY = "Unknown Property"


def resolve_brand_colors(user_settings: Optional[UserSettings]) -> BrandColors:
    """Brand colors from user settings, with defaults for unset values."""
    defaults = BrandColors()
    if user_settings is None:
        return defaults
    return BrandColors(
        primary=user_settings.accent_color or defaults.primary,
        secondary=user_settings.secondary_color or defaults.secondary,
        accent=user_settings.report_accent_color or defaults.accent,
    )


class SettingsRepository(BaseRepository[UserSettings], SettingsStore):
    """Reads property identity and user branding for a report."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, UserSettings)

    async def get_context(self, report: ReportRecord) -> ReportContext:
        user_settings = await self.get_by_id(report.user_id)
        prop = await self.session.get(Property, report.property_id)
        if prop is None:
            self.logger.warning(
                "Property not found for report",
                extra={"report_id": report.id, "property_id": report.property_id},
            )

        template = user_settings.report_template if user_settings is not None else None
        return ReportContext(
            property_name=(prop.name if prop is not None else "") or UNKNOWN_PROPERTY,
            property_address=(prop.address if prop is not None else "") or "",
            unit_count=prop.units if prop is not None else None,
            investment_strategy=(prop.investment_strategy if prop is not None else "") or "",
            company_name=(user_settings.company_name if user_settings is not None else "") or "",
            tier=Tier.coerce(user_settings.tier if user_settings is not None else None),
            brand_colors=resolve_brand_colors(user_settings),
            custom_section_ids=list(template) if template else None,
            month=report.selected_month,
            year=report.selected_year,
        )
