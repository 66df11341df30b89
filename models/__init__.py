"""Database models and question value objects for the QuestionPro AI quiz service."""

from .db_models import Base, Framework, Module, Quiz, QuizAttempt, GenerationCheckpoint
from .quiz_models import LEVELS, Question, QuizLevel, decode_questions, encode_questions, next_level

__all__ = [
    "Base",
    "Framework",
    "Module",
    "Quiz",
    "QuizAttempt",
    "GenerationCheckpoint",
    "LEVELS",
    "Question",
    "QuizLevel",
    "decode_questions",
    "encode_questions",
    "next_level",
]
