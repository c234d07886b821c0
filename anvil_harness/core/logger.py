# /anvil_harness/core/logger.py
import logging
import structlog
import sentry_sdk
from prometheus_client import Counter

# --- Prometheus Metrics ---
SIMULATORS_STARTED = Counter("harness_simulators_started_total", "Simulator processes started", ["chain_id"])
CHAIN_RESETS = Counter("harness_chain_resets_total", "Completed resets, by kind", ["kind"])
REQUESTS_FORWARDED = Counter("harness_requests_forwarded_total", "Client requests forwarded to a simulator")
FORWARD_ERRORS = Counter("harness_forward_errors_total", "Client requests that could not be forwarded")
FUNDING_FAILURES = Counter("harness_funding_failures_total", "fund() calls that exhausted every donor", ["symbol"])


def configure_logging(level: str = "INFO", sentry_dsn: str | None = None):
    if sentry_dsn:
        sentry_sdk.init(dsn=sentry_dsn, traces_sample_rate=1.0)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelName(level.upper())),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        # setup() reconfigures with the user's level; cached loggers would keep the old one.
        cache_logger_on_first_use=False,
    )


def get_logger(name: str):
    return structlog.get_logger(name)


configure_logging()
log = get_logger("anvil_harness")
