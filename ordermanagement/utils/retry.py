import logging
import time
from typing import Callable, TypeVar

from ordermanagement.config import STORE_RETRY_ATTEMPTS, STORE_RETRY_DELAY_SECONDS
from ordermanagement.errors import TransientInfrastructureError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def call_with_retries(
    fn: Callable[..., T],
    *args,
    attempts: int = STORE_RETRY_ATTEMPTS,
    delay: float = STORE_RETRY_DELAY_SECONDS,
    **kwargs,
) -> T:
    """
    Call fn, retrying TransientInfrastructureError with exponential backoff.
    Only wrap idempotent operations. Any other exception propagates at once.
    """
    attempts = max(1, attempts)
    for attempt in range(attempts):
        try:
            return fn(*args, **kwargs)
        except TransientInfrastructureError as e:
            logger.warning(
                f"{getattr(fn, '__name__', fn)} attempt {attempt + 1}/{attempts} failed: {e}"
            )
            if attempt >= attempts - 1:
                raise
            time.sleep(delay * (2 ** attempt))
