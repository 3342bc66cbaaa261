"""Page window arithmetic shared by the invoice and payment listings."""

import math

from billing.config import BillingConfig
from billing.exceptions import InvalidInputError
from billing.models import PageInfo


def resolve_page(page: int, limit: int | None, config: BillingConfig) -> tuple[int, int, int]:
    """
    Normalize a requested page.

    Returns:
        (page, limit, offset). A missing limit uses the default page size;
        an oversized one is capped at the maximum page size.

    Raises:
        InvalidInputError: If page or limit is below 1
    """
    if page < 1:
        raise InvalidInputError("page must be 1 or greater")
    if limit is None:
        limit = config.default_page_size
    if limit < 1:
        raise InvalidInputError("limit must be 1 or greater")
    limit = min(limit, config.max_page_size)
    return page, limit, (page - 1) * limit


def page_info(page: int, limit: int, total: int) -> PageInfo:
    return PageInfo(
        page=page,
        limit=limit,
        total=total,
        total_pages=math.ceil(total / limit) if total else 0,
    )
