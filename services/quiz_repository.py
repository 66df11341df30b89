import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError
from sqlalchemy import func, or_, select
from sqlalchemy.exc import DBAPIError

from models import Framework, GenerationCheckpoint, Module, Question, Quiz, QuizAttempt, decode_questions, encode_questions
from services.database_service import DatabaseService, get_database_service
from services.errors import DataError, TransportError

logger = logging.getLogger(__name__)

REGENERATION_CHECKPOINT = "quiz_regeneration"


@dataclass
class Checkpoint:
    """Next unit of work for the batch driver: a framework position and a level.

    ``level`` is None when the framework should start from its first level.
    """

    framework_index: int = 0
    framework_id: Optional[int] = None
    level: Optional[str] = None


class QuizRepository:
    """Repository for frameworks, quizzes, attempts and the regeneration checkpoint."""

    def __init__(self, db_service: Optional[DatabaseService] = None):
        self.db_service = db_service or get_database_service()
        self.SessionLocal = self.db_service.SessionLocal

    @staticmethod
    def _serialize_framework(record: Framework) -> Dict[str, Any]:
        return {
            "id": record.id,
            "name": record.name,
            "description": record.description,
            "level": record.level,
            "duration": record.duration,
            "status": record.status,
            "case_studies": record.case_studies,
        }

    @staticmethod
    def _serialize_module(record: Module) -> Dict[str, Any]:
        return {
            "id": record.id,
            "framework_id": record.framework_id,
            "name": record.name,
            "description": record.description,
            "content": record.content,
            "examples": record.examples,
            "key_takeaways": record.key_takeaways,
            "order": record.order,
            "completed": bool(record.completed),
        }

    @staticmethod
    def _serialize_quiz(record: Quiz) -> Dict[str, Any]:
        try:
            questions = [q.to_record() for q in decode_questions(record.questions)]
        except (json.JSONDecodeError, TypeError, ValidationError):
            logger.warning(f"Quiz {record.id} has an unreadable questions column")
            questions = []

        return {
            "id": record.id,
            "framework_id": record.framework_id,
            "title": record.title,
            "description": record.description,
            "level": record.level,
            "questions": questions,
            "question_count": record.question_count,
            "time_limit": record.time_limit,
            "passing_score": record.passing_score,
            "is_active": bool(record.is_active),
        }

    @staticmethod
    def _serialize_attempt(record: QuizAttempt) -> Dict[str, Any]:
        return {
            "id": record.id,
            "user_id": record.user_id,
            "quiz_id": record.quiz_id,
            "answers": record.answers,
            "score": record.score,
            "max_score": record.max_score,
            "passed": record.passed,
            "time_taken": record.time_taken,
            "completed_at": record.completed_at.isoformat(),
        }

    def list_frameworks(self, search: Optional[str] = None) -> List[Dict[str, Any]]:
        with self.SessionLocal() as session:
            query = select(Framework).order_by(Framework.id)
            if search:
                pattern = f"%{search.lower()}%"
                query = query.where(
                    or_(
                        func.lower(Framework.name).like(pattern),
                        func.lower(Framework.description).like(pattern)
                    )
                )
            return [self._serialize_framework(r) for r in session.scalars(query)]

    def get_framework(self, framework_id: int) -> Optional[Dict[str, Any]]:
        with self.SessionLocal() as session:
            record = session.get(Framework, framework_id)
            return self._serialize_framework(record) if record else None

    def get_modules(self, framework_id: int) -> List[Dict[str, Any]]:
        with self.SessionLocal() as session:
            query = select(Module).where(Module.framework_id == framework_id).order_by(Module.order, Module.id)
            return [self._serialize_module(r) for r in session.scalars(query)]

    def get_quizzes_by_framework(self, framework_id: int, level: Optional[str] = None) -> List[Dict[str, Any]]:
        with self.SessionLocal() as session:
            query = select(Quiz).where(Quiz.framework_id == framework_id).order_by(Quiz.id)
            if level:
                query = query.where(Quiz.level == level)
            return [self._serialize_quiz(r) for r in session.scalars(query)]

    def get_quiz(self, quiz_id: int) -> Optional[Dict[str, Any]]:
        with self.SessionLocal() as session:
            record = session.get(Quiz, quiz_id)
            return self._serialize_quiz(record) if record else None

    @staticmethod
    def _apply_questions(session, quiz_id: int, encoded: str, count: int) -> Quiz:
        record = session.get(Quiz, quiz_id)
        if record is None:
            raise DataError(f"Quiz {quiz_id} not found")
        record.questions = encoded
        record.question_count = count
        return record

    @staticmethod
    def _apply_checkpoint(session, name: str, checkpoint: Checkpoint) -> None:
        record = session.get(GenerationCheckpoint, name)
        if record is None:
            record = GenerationCheckpoint(name=name)
            session.add(record)
        record.framework_index = checkpoint.framework_index
        record.framework_id = checkpoint.framework_id
        record.level = checkpoint.level
        record.updated_at = datetime.utcnow()

    def replace_quiz_questions(self, quiz_id: int, questions: Sequence[Question]) -> Dict[str, Any]:
        """Replace a quiz's question set and count in one transaction."""
        encoded = encode_questions(list(questions))
        try:
            with self.SessionLocal.begin() as session:
                record = self._apply_questions(session, quiz_id, encoded, len(questions))
                serialized = self._serialize_quiz(record)
        except DBAPIError as e:
            logger.error(f"Failed to update quiz {quiz_id}: {e}")
            raise TransportError(f"Store unavailable while updating quiz {quiz_id}: {e}") from e

        logger.info(f"Updated quiz ID {quiz_id} with {len(questions)} new questions")
        return serialized

    def replace_level_questions(
        self,
        quiz_ids: Sequence[int],
        questions: Sequence[Question],
        checkpoint: Optional[Checkpoint] = None,
        checkpoint_name: str = REGENERATION_CHECKPOINT,
    ) -> None:
        """Write one question set to several quizzes and advance the checkpoint atomically."""
        encoded = encode_questions(list(questions))
        try:
            with self.SessionLocal.begin() as session:
                for quiz_id in quiz_ids:
                    self._apply_questions(session, quiz_id, encoded, len(questions))
                if checkpoint is not None:
                    self._apply_checkpoint(session, checkpoint_name, checkpoint)
        except DBAPIError as e:
            logger.error(f"Failed to update quizzes {list(quiz_ids)}: {e}")
            raise TransportError(f"Store unavailable while updating quizzes: {e}") from e

        logger.info(f"Updated {len(quiz_ids)} quizzes with {len(questions)} new questions")

    def get_checkpoint(self, name: str = REGENERATION_CHECKPOINT) -> Optional[Checkpoint]:
        with self.SessionLocal() as session:
            record = session.get(GenerationCheckpoint, name)
            if record is None:
                return None
            return Checkpoint(
                framework_index=record.framework_index,
                framework_id=record.framework_id,
                level=record.level,
            )

    def get_checkpoint_info(self, name: str = REGENERATION_CHECKPOINT) -> Optional[Dict[str, Any]]:
        with self.SessionLocal() as session:
            record = session.get(GenerationCheckpoint, name)
            if record is None:
                return None
            return {
                "name": record.name,
                "framework_index": record.framework_index,
                "framework_id": record.framework_id,
                "level": record.level,
                "updated_at": record.updated_at.isoformat(),
            }

    def save_checkpoint(self, checkpoint: Checkpoint, name: str = REGENERATION_CHECKPOINT) -> None:
        try:
            with self.SessionLocal.begin() as session:
                self._apply_checkpoint(session, name, checkpoint)
        except DBAPIError as e:
            raise TransportError(f"Store unavailable while saving checkpoint: {e}") from e

    def clear_checkpoint(self, name: str = REGENERATION_CHECKPOINT) -> None:
        with self.SessionLocal.begin() as session:
            record = session.get(GenerationCheckpoint, name)
            if record is not None:
                session.delete(record)

    def create_quiz_attempt(
        self,
        user_id: int,
        quiz_id: int,
        answers: List[int],
        score: int,
        max_score: int,
        passed: bool,
        time_taken: Optional[int] = None,
    ) -> Dict[str, Any]:
        with self.SessionLocal.begin() as session:
            record = QuizAttempt(
                user_id=user_id,
                quiz_id=quiz_id,
                answers=answers,
                score=score,
                max_score=max_score,
                passed=passed,
                time_taken=time_taken,
                completed_at=datetime.utcnow(),
            )
            session.add(record)
            session.flush()
            serialized = self._serialize_attempt(record)

        logger.info(f"Recorded attempt {serialized['id']} for quiz {quiz_id} by user {user_id}")
        return serialized

    def get_quiz_attempts_by_quiz(self, quiz_id: int) -> List[Dict[str, Any]]:
        with self.SessionLocal() as session:
            query = select(QuizAttempt).where(QuizAttempt.quiz_id == quiz_id).order_by(QuizAttempt.completed_at.desc())
            return [self._serialize_attempt(r) for r in session.scalars(query)]

    def get_user_quiz_attempts(self, user_id: int) -> List[Dict[str, Any]]:
        with self.SessionLocal() as session:
            query = select(QuizAttempt).where(QuizAttempt.user_id == user_id).order_by(QuizAttempt.completed_at.desc())
            return [self._serialize_attempt(r) for r in session.scalars(query)]


quiz_repository: Optional[QuizRepository] = None


def get_quiz_repository() -> QuizRepository:
    global quiz_repository
    if quiz_repository is None:
        quiz_repository = QuizRepository()
    return quiz_repository
