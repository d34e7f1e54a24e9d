"""
Fail-open wrapper for non-critical pipeline stages.

Rate limiting, caching, usage accounting and task classification must
never take the primary request path down. Instead of a try/except at
every call site, those stages are decorated:

    @best_effort("cache lookup", default=None)
    async def lookup(...): ...

Any exception is logged with its traceback and the default is returned.
ProxyError subclasses (e.g. RateLimitExceeded) are decisions, not
failures, and always propagate.
"""

from __future__ import annotations

import functools
import inspect
import logging
from typing import Any, Callable, TypeVar

from app.core.errors import ProxyError

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


def best_effort(stage: str, default: Any = None) -> Callable[[F], F]:
    """Decorate a sync or async callable so failures return `default`."""

    def decorator(fn: F) -> F:
        if inspect.iscoroutinefunction(fn):

            @functools.wraps(fn)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                try:
                    return await fn(*args, **kwargs)
                except ProxyError:
                    raise
                except Exception:
                    logger.exception("%s failed (non-fatal); continuing without it", stage)
                    return default

            return async_wrapper  # type: ignore[return-value]

        @functools.wraps(fn)
        def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                return fn(*args, **kwargs)
            except ProxyError:
                raise
            except Exception:
                logger.exception("%s failed (non-fatal); continuing without it", stage)
                return default

        return sync_wrapper  # type: ignore[return-value]

    return decorator
