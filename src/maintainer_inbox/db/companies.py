"""Company overrides and classifications."""

import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from maintainer_inbox.db.models import Company, CompanyOverride

logger = logging.getLogger(__name__)

COMPANY_CLASSIFICATIONS = ("INTERNAL", "COMPETITOR", "CUSTOMER", "PROSPECT", "OTHER")


async def set_company_override(session: AsyncSession, user_id: int, company_name: str) -> CompanyOverride:
    """Assign a company to a user, replacing any previous override."""
    name = company_name.strip()
    if not name:
        raise ValueError("company name must not be empty")

    result = await session.execute(
        select(CompanyOverride).where(CompanyOverride.github_user_id == user_id)
    )
    row = result.scalar_one_or_none()
    if row is None:
        row = CompanyOverride(github_user_id=user_id, override_company_name=name)
        session.add(row)
    else:
        row.override_company_name = name
    await session.commit()
    logger.info(f"Company override for user {user_id} set to {name!r}")
    return row


async def clear_company_override(session: AsyncSession, user_id: int) -> bool:
    """Remove a user's override. Returns False if none existed."""
    result = await session.execute(
        select(CompanyOverride).where(CompanyOverride.github_user_id == user_id)
    )
    row = result.scalar_one_or_none()
    if row is None:
        return False
    await session.delete(row)
    await session.commit()
    return True


async def classify_company(session: AsyncSession, name: str, classification: str) -> Company:
    """Create or reclassify a company. Names match case-insensitively."""
    classification = classification.upper()
    if classification not in COMPANY_CLASSIFICATIONS:
        raise ValueError(
            f"Unknown classification {classification!r}, "
            f"expected one of {', '.join(COMPANY_CLASSIFICATIONS)}"
        )
    name = name.strip()
    if not name:
        raise ValueError("company name must not be empty")

    result = await session.execute(
        select(Company).where(func.lower(Company.name) == name.lower())
    )
    company = result.scalar_one_or_none()
    if company is None:
        company = Company(name=name, classification=classification)
        session.add(company)
    else:
        company.classification = classification
    await session.commit()
    return company
