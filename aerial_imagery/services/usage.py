"""Per-endpoint request accounting for the imagery provider.

Counters are keyed by ``"<provider>:<endpoint>"`` (for example
``"eagleview:tiles"``). Accounting is best effort: a database failure is
logged and never interrupts the imagery request that triggered it.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from .. import database
from ..models import ApiUsageStat

logger = logging.getLogger(__name__)

_usage_initialized = False


def _ensure_usage_table() -> None:
    global _usage_initialized
    if not _usage_initialized:
        database.init_db()
        _usage_initialized = True


def _find_stat(session: Session, endpoint_key: str) -> ApiUsageStat | None:
    statement = select(ApiUsageStat).where(ApiUsageStat.provider == endpoint_key)
    return session.exec(statement).one_or_none()


def _add_requests(session: Session, endpoint_key: str, requests: int) -> ApiUsageStat:
    now = datetime.now(UTC)
    stat = _find_stat(session, endpoint_key)
    if stat is None:
        stat = ApiUsageStat(provider=endpoint_key, request_count=0)
        session.add(stat)
    stat.request_count += requests
    stat.last_used_at = now
    return stat


def record_api_usage(endpoint_key: str, *, increment: int = 1) -> bool:
    """Add ``increment`` successful requests to the counter for ``endpoint_key``.

    Batched callers (the tile grid) pass the number of requests in one call so
    each batch costs a single commit. Returns ``False`` when the counter could
    not be written.
    """

    if increment <= 0:
        return True

    try:
        _ensure_usage_table()
        with database.session_scope() as session:
            _add_requests(session, endpoint_key, increment)
            session.commit()
    except SQLAlchemyError as exc:
        logger.warning("Could not record %d request(s) for %s: %s", increment, endpoint_key, exc)
        return False
    return True


def usage_count(endpoint_key: str) -> int:
    """Return how many requests have been recorded for ``endpoint_key``."""

    _ensure_usage_table()

    with database.session_scope() as session:
        stat = _find_stat(session, endpoint_key)
        return stat.request_count if stat is not None else 0
