import json
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class QuizLevel(str, Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


LEVELS: List[QuizLevel] = [QuizLevel.BEGINNER, QuizLevel.INTERMEDIATE, QuizLevel.ADVANCED]


def next_level(level: QuizLevel) -> Optional[QuizLevel]:
    """Level after ``level``, or None when ``level`` is the last one"""
    index = LEVELS.index(QuizLevel(level))
    if index + 1 < len(LEVELS):
        return LEVELS[index + 1]
    return None


class Question(BaseModel):
    """A multiple-choice question as stored on a quiz.

    The stored form uses the keys ``question`` and ``correctAnswer``; the
    attribute names are ``text`` and ``correct_answer``.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: int = Field(description="Position of the question in its quiz, starting at 1")
    text: str = Field(alias="question", min_length=1)
    options: List[str]
    correct_answer: int = Field(alias="correctAnswer")
    explanation: Optional[str] = None

    @field_validator("text")
    @classmethod
    def _strip_text(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("question text must not be blank")
        return value

    @field_validator("options")
    @classmethod
    def _four_distinct_options(cls, value: List[str]) -> List[str]:
        if len(value) != 4:
            raise ValueError(f"expected exactly 4 options, got {len(value)}")
        if len(set(value)) != 4:
            raise ValueError("options must be distinct")
        return value

    @model_validator(mode="after")
    def _answer_in_range(self) -> "Question":
        if not 0 <= self.correct_answer < len(self.options):
            raise ValueError(f"correctAnswer {self.correct_answer} out of range")
        return self

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "question": self.text,
            "options": list(self.options),
            "correctAnswer": self.correct_answer,
            "explanation": self.explanation,
        }


def encode_questions(questions: List[Question]) -> str:
    """Serialize a question set for the quiz ``questions`` column"""
    return json.dumps([q.to_record() for q in questions], separators=(",", ":"), ensure_ascii=False)


def decode_questions(raw: Optional[str]) -> List[Question]:
    if not raw:
        return []
    return [Question.model_validate(item) for item in json.loads(raw)]
