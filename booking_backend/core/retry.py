import logging
import time
from typing import Callable, TypeVar

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from booking_backend.core import config
from booking_backend.core.errors import TransientStoreError

logger = logging.getLogger(__name__)

T = TypeVar('T')


def run_with_store_retry(
    db: Session,
    operation: Callable[[], T],
    *,
    description: str,
    max_attempts: int | None = None,
    base_delay: float | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``operation`` and retry it with exponential backoff on connectivity faults.

    Only ``OperationalError`` is treated as transient. The session is rolled back
    before every retry so a failed attempt never leaves partial state behind.
    """
    attempts = max_attempts or config.STORE_RETRY_ATTEMPTS
    delay = config.STORE_RETRY_BASE_DELAY_SECONDS if base_delay is None else base_delay

    for attempt in range(attempts):
        try:
            return operation()
        except OperationalError as exc:
            db.rollback()
            if attempt == attempts - 1:
                logger.error('All %s attempts failed for %s: %s', attempts, description, exc)
                raise TransientStoreError(
                    'Database unavailable. Please try again shortly.'
                ) from exc
            logger.warning('Retry %s/%s for %s: %s', attempt + 1, attempts, description, exc)
            sleep(delay * (2 ** attempt))

    raise AssertionError('unreachable')
