# services/retry.py
"""
Retry with exponential backoff + jitter for idempotent database work.

Only wrap calls that are safe to repeat (reads, full recomputes, the expiry
sweep). Multi-step sequences such as refunds and merges are never retried
blindly; merges resume from their persisted step instead.
"""
import random
import time
from typing import Callable, Iterable, Optional, Tuple, Type, TypeVar

from sqlalchemy.exc import OperationalError

import config
from logging_config import get_logger

log = get_logger(__name__)

T = TypeVar("T")
ExcTuple = Tuple[Type[BaseException], ...]


def retry_call(
     fn: Callable[[], T],
     *,
     attempts: int = config.RETRY_ATTEMPTS,
     base_ms: int = 50,
     max_ms: int = 2000,
     jitter_ms: int = 50,
     retry_on: Iterable[Type[BaseException]] = (OperationalError,),
     on_retry: Optional[Callable[[], None]] = None,
) -> T:
     exc_types: ExcTuple = tuple(retry_on)
     delay = base_ms
     for i in range(attempts):
          try:
               return fn()
          except exc_types as e:
               if i == attempts - 1:
                    raise
               log.warning("retrying_after_error", attempt=i + 1, error=str(e))
               if on_retry is not None:
                    on_retry()
               jitter = random.randint(0, jitter_ms)
               time.sleep(min((delay + jitter) / 1000.0, max_ms / 1000.0))
               delay = min(delay * 2, max_ms)
     raise RuntimeError("retry_call needs at least one attempt")
