import logging
from typing import List, Optional

import sentry_sdk
import structlog
from sentry_sdk.integrations.logging import LoggingIntegration

from config import Settings


def configure_logging(log_file: Optional[str] = None, level: int = logging.INFO) -> None:
    """Route structlog through stdlib logging with JSON output."""
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )


def init_sentry(settings: Settings, integrations: Optional[list] = None, release: str = "questionpro-quiz@1.0.0") -> bool:
    """Initialise Sentry when a DSN is configured. Returns True if enabled."""
    logger = structlog.get_logger(__name__)

    if not settings.sentry_dsn:
        logger.warning("Sentry DSN not configured - error monitoring disabled")
        return False

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        integrations=[
            *(integrations or []),
            LoggingIntegration(
                level=logging.INFO,
                event_level=logging.ERROR
            )
        ],
        traces_sample_rate=1.0,
        environment=settings.environment,
        release=release
    )
    logger.info("Sentry error monitoring initialized")
    return True
