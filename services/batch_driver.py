import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import structlog

from config import Settings, get_settings
from models import LEVELS, QuizLevel, next_level
from services.content_source import ContentSource
from services.errors import DataError, TransportError
from services.quiz_repository import REGENERATION_CHECKPOINT, Checkpoint, QuizRepository
from services.retry_controller import RetryController

logger = structlog.get_logger(__name__)


@dataclass
class FrameworkResult:
    success: bool
    framework_id: int
    # level to resume from after a handled failure; None when no level remains
    level: Optional[str] = None
    levels_updated: int = 0


@dataclass
class BatchResult:
    frameworks_total: int = 0
    frameworks_completed: int = 0
    frameworks_skipped: List[int] = field(default_factory=list)
    levels_updated: int = 0
    resumed_from: Optional[Checkpoint] = None

    @property
    def success(self) -> bool:
        return not self.frameworks_skipped


class BatchDriver:
    """Regenerates every framework's quizzes, one framework and one level at a time.

    The cursor (framework position, level) is kept on ``self.cursor`` and
    persisted through the repository after every change, so a restarted
    process continues with the next unprocessed level.
    """

    def __init__(
        self,
        repository: QuizRepository,
        content_source: ContentSource,
        controller: RetryController,
        settings: Optional[Settings] = None,
        sleep: Optional[Callable[[float], None]] = None,
        on_quiz_updated: Optional[Callable[[int], None]] = None,
        checkpoint_name: str = REGENERATION_CHECKPOINT,
    ):
        self.repository = repository
        self.content_source = content_source
        self.controller = controller
        self.settings = settings or get_settings()
        self.sleep = sleep or time.sleep
        self.on_quiz_updated = on_quiz_updated
        self.checkpoint_name = checkpoint_name
        self.cursor = Checkpoint()

    def _question_count(self, level: QuizLevel) -> int:
        return self.settings.questions_per_level[QuizLevel(level).value]

    def process_framework(
        self,
        framework: Dict[str, Any],
        start_level: Optional[str] = None,
        framework_index: Optional[int] = None,
    ) -> FrameworkResult:
        """Regenerate the framework's quizzes from ``start_level`` onwards.

        When ``framework_index`` is given, each level's write also advances the
        persisted checkpoint in the same transaction.
        """
        logger.info(f"Processing framework: {framework['name']} (ID: {framework['id']})")

        _, context = self.content_source.load(framework["id"])
        quizzes = self.repository.get_quizzes_by_framework(framework["id"])
        level_quizzes = {
            level.value: [q for q in quizzes if q["level"] == level.value]
            for level in LEVELS
        }

        start_index = LEVELS.index(QuizLevel(start_level)) if start_level else 0
        if start_index > 0:
            logger.info(f"Resuming from {start_level} level")

        levels_updated = 0
        for i in range(start_index, len(LEVELS)):
            level = LEVELS[i]
            targets = level_quizzes[level.value]
            if not targets:
                logger.warning(f"No {level.value} quiz for {framework['name']}, skipping level")
                continue

            try:
                questions = self.controller.generate(
                    framework["name"], level, context, self._question_count(level)
                )
                self.repository.replace_level_questions(
                    [q["id"] for q in targets],
                    questions,
                    checkpoint=self._checkpoint_after(framework, framework_index, level),
                    checkpoint_name=self.checkpoint_name,
                )
            except (TransportError, DataError) as e:
                resume_level = next_level(level)
                logger.error(f"Error processing {level.value} level for {framework['name']}: {e}")
                return FrameworkResult(
                    success=False,
                    framework_id=framework["id"],
                    level=resume_level.value if resume_level else None,
                    levels_updated=levels_updated,
                )

            levels_updated += 1
            if self.on_quiz_updated:
                for quiz in targets:
                    self.on_quiz_updated(quiz["id"])
            logger.info(f"Updated {len(targets)} {level.value} quizzes for {framework['name']}")

            if i < len(LEVELS) - 1:
                logger.info(f"Waiting {self.settings.level_delay:.0f} seconds before processing next level...")
                self.sleep(self.settings.level_delay)

        return FrameworkResult(success=True, framework_id=framework["id"], levels_updated=levels_updated)

    @staticmethod
    def _checkpoint_after(framework: Dict[str, Any], framework_index: Optional[int], level: QuizLevel) -> Optional[Checkpoint]:
        if framework_index is None:
            return None
        following = next_level(level)
        if following is None:
            return Checkpoint(framework_index=framework_index + 1)
        return Checkpoint(framework_index=framework_index, framework_id=framework["id"], level=following.value)

    def _persist(self, cursor: Checkpoint, enabled: bool) -> None:
        self.cursor = cursor
        if not enabled:
            return
        try:
            self.repository.save_checkpoint(cursor, name=self.checkpoint_name)
        except TransportError as e:
            logger.warning(f"Could not persist checkpoint {cursor}: {e}")

    def _initial_cursor(self, frameworks: List[Dict[str, Any]], resume: bool) -> Optional[Checkpoint]:
        if not resume:
            return None
        saved = self.repository.get_checkpoint(self.checkpoint_name)
        if saved is None:
            return None

        if saved.framework_id is not None:
            for index, framework in enumerate(frameworks):
                if framework["id"] == saved.framework_id:
                    return Checkpoint(framework_index=index, framework_id=framework["id"], level=saved.level)
            logger.warning(f"Checkpoint framework {saved.framework_id} no longer exists, starting over")
            return None

        index = min(max(saved.framework_index, 0), len(frameworks))
        return Checkpoint(
            framework_index=index,
            framework_id=frameworks[index]["id"] if index < len(frameworks) else None,
        )

    def _advance(self, frameworks: List[Dict[str, Any]], index: int) -> Checkpoint:
        index += 1
        return Checkpoint(
            framework_index=index,
            framework_id=frameworks[index]["id"] if index < len(frameworks) else None,
        )

    def run(
        self,
        frameworks: Optional[List[Dict[str, Any]]] = None,
        resume: bool = True,
        persist: bool = True,
    ) -> BatchResult:
        """Process ``frameworks`` (default: all, ordered by id) until every level is done."""
        if frameworks is None:
            frameworks = self.repository.list_frameworks()

        result = BatchResult(frameworks_total=len(frameworks))
        cursor = self._initial_cursor(frameworks, resume) if persist else None
        if cursor is not None:
            result.resumed_from = cursor
            logger.info(f"Resuming batch at framework index {cursor.framework_index}, level {cursor.level or 'beginner'}")
        else:
            cursor = Checkpoint(framework_id=frameworks[0]["id"] if frameworks else None)
        self.cursor = cursor

        restarts = 0
        while cursor.framework_index < len(frameworks):
            index = cursor.framework_index
            framework = frameworks[index]

            try:
                outcome = self.process_framework(framework, cursor.level, index if persist else None)
            except DataError as e:
                logger.error(f"Skipping framework {framework['name']}: {e}")
                result.frameworks_skipped.append(framework["id"])
                restarts = 0
                cursor = self._advance(frameworks, index)
                self._persist(cursor, persist)
                continue
            except Exception as e:
                restarts += 1
                logger.error(f"Unexpected error processing framework {framework['name']}: {e}", exc_info=True)
                limit = self.settings.max_framework_restarts
                if limit is not None and restarts > limit:
                    logger.error(f"Giving up on framework {framework['name']} after {restarts} unexpected failures")
                    raise
                cursor = Checkpoint(framework_index=index, framework_id=framework["id"])
                self._persist(cursor, persist)
                logger.info(f"Waiting {self.settings.unexpected_error_delay:.0f} seconds before retrying framework {framework['name']}...")
                self.sleep(self.settings.unexpected_error_delay)
                continue

            restarts = 0
            result.levels_updated += outcome.levels_updated

            if outcome.success or outcome.level is None:
                if outcome.success:
                    result.frameworks_completed += 1
                else:
                    logger.warning(f"Last level of {framework['name']} failed, no level left to resume")
                    result.frameworks_skipped.append(framework["id"])
                cursor = self._advance(frameworks, index)
                self._persist(cursor, persist)
                if cursor.framework_index < len(frameworks):
                    logger.info(f"Waiting {self.settings.framework_delay:.0f} seconds before processing next framework...")
                    self.sleep(self.settings.framework_delay)
            else:
                cursor = Checkpoint(framework_index=index, framework_id=framework["id"], level=outcome.level)
                self._persist(cursor, persist)
                logger.info(f"Will resume processing framework {framework['name']} at {outcome.level} level")
                logger.info(f"Waiting {self.settings.failure_delay:.0f} seconds before retrying...")
                self.sleep(self.settings.failure_delay)

        if persist:
            self.repository.clear_checkpoint(self.checkpoint_name)
        logger.info("All quiz questions have been regenerated")
        return result

    def run_single(self, framework_id: int) -> BatchResult:
        """Process one framework by id without touching the batch checkpoint."""
        framework = self.repository.get_framework(framework_id)
        if framework is None:
            raise DataError(f"Framework with ID {framework_id} not found")
        return self.run(frameworks=[framework], resume=False, persist=False)
