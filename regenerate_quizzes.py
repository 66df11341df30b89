"""Regenerate the questions of every framework quiz with Gemini.

Usage:
    python regenerate_quizzes.py                  # all frameworks, resuming a saved checkpoint
    python regenerate_quizzes.py --no-resume      # all frameworks from the start
    python regenerate_quizzes.py --framework 3    # a single framework
"""

import argparse
import sys
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

import structlog

from config import Settings, get_settings
from logging_setup import configure_logging, init_sentry
from services.batch_driver import BatchDriver, BatchResult
from services.cache_service import CacheService, get_cache_service
from services.content_source import ContentSource
from services.database_service import DatabaseService
from services.llm_service import LLMService
from services.quiz_repository import QuizRepository
from services.retry_controller import RetryController

logger = structlog.get_logger(__name__)


@dataclass
class RegenerationConfig:
    """Inputs of a regeneration run. Collaborators left as None are built from ``settings``."""

    settings: Settings
    framework_id: Optional[int] = None
    resume: bool = True
    repository: Optional[QuizRepository] = None
    generator: Optional[LLMService] = None
    cache: Optional[CacheService] = None
    sleep: Optional[Callable[[float], None]] = None


def build_driver(config: RegenerationConfig) -> BatchDriver:
    settings = config.settings
    repository = config.repository or QuizRepository(DatabaseService(settings=settings))
    generator = config.generator or LLMService(settings=settings)
    cache = config.cache if config.cache is not None else get_cache_service()
    sleep = config.sleep or time.sleep

    return BatchDriver(
        repository=repository,
        content_source=ContentSource(repository, max_length=settings.max_context_length),
        controller=RetryController(generator, max_attempts=settings.max_attempts, sleep=sleep),
        settings=settings,
        sleep=sleep,
        on_quiz_updated=cache.invalidate_quiz,
    )


def run(config: RegenerationConfig) -> BatchResult:
    driver = build_driver(config)
    if config.framework_id is not None:
        logger.info(f"Regenerating quiz questions for framework ID {config.framework_id}")
        return driver.run_single(config.framework_id)
    return driver.run(resume=config.resume)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Regenerate quiz questions for all frameworks")
    parser.add_argument("--framework", type=int, default=None, help="Only regenerate this framework ID")
    parser.add_argument("--no-resume", action="store_true", help="Ignore a saved checkpoint and start from the first framework")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    settings = get_settings()
    configure_logging(settings.log_file)
    init_sentry(settings)

    config = RegenerationConfig(settings=settings, framework_id=args.framework, resume=not args.no_resume)
    try:
        result = run(config)
    except Exception as e:
        logger.error(f"Error regenerating quiz questions: {e}", exc_info=True)
        return 1

    logger.info(
        "Quiz regeneration finished",
        frameworks=result.frameworks_total,
        completed=result.frameworks_completed,
        skipped=result.frameworks_skipped,
        levels_updated=result.levels_updated,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
