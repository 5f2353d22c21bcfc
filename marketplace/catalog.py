"""
Marketplace service: package catalog (read side)

Packages are read-only catalog entries; orders snapshot their price.
"""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession


def _package(row) -> dict:
    return {
        "id": row.id,
        "name": row.name,
        "price": float(row.price),
        "currency_amount": row.currency_amount,
        "description": row.description,
    }


async def get_package(session: AsyncSession, package_id: int) -> dict | None:
    result = await session.execute(
        text("SELECT * FROM packages WHERE id = :id"),
        {"id": package_id},
    )
    row = result.fetchone()
    if not row:
        return None
    return _package(row)


async def list_packages(session: AsyncSession) -> list[dict]:
    result = await session.execute(text("SELECT * FROM packages ORDER BY id ASC"))
    return [_package(row) for row in result.fetchall()]
