"""Shared handling for store failures the engine resolves fail-open."""

import structlog

from ringhub.exceptions import StoreUnavailable
from ringhub.metrics import store_errors

log = structlog.get_logger()


def report_store_failure(exc: StoreUnavailable, **context) -> None:
    """Count and log a store failure that the caller is about to absorb."""
    store_errors.labels(store=exc.store, operation=exc.operation).inc()
    log.warning(
        "store_unavailable_fail_open",
        store=exc.store,
        operation=exc.operation,
        exc_info=exc,
        **context,
    )
