"""Utility modules for cross-cutting concerns."""

from utils.timezone import now_utc, to_utc
from utils.money import CENT, ZERO, to_money, has_at_most_cents
from utils.user_context import (
    get_current_user_id,
    find_current_user_id,
    set_current_user_id,
    clear_current_user_id,
    user_context,
)
