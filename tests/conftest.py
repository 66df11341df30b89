import json
import os
from types import SimpleNamespace

import pytest

os.environ.setdefault("LOG_FILE", "")

from config import Settings
from models import Framework, Module, Quiz
from services.database_service import DatabaseService
from services.quiz_repository import QuizRepository
from services.retry_controller import generate_fallback_questions


MECE_MODULES = [
    {
        "name": "MECE Fundamentals",
        "description": "Learn the core concept of Mutually Exclusive, Collectively Exhaustive and its applications.",
        "content": "<h2>Introduction to MECE</h2><p>MECE is a principle used to organize information into buckets.</p>",
        "key_takeaways": "MECE stands for Mutually Exclusive, Collectively Exhaustive",
    },
    {
        "name": "Building MECE Issue Trees",
        "description": "Learn how to construct MECE issue trees to break down complex problems.",
        "content": "<h2>Issue Trees in Problem Solving</h2><p>An issue tree breaks a problem into components.</p>",
        "key_takeaways": "Issue trees visually organize problems into MECE categories",
    },
    {
        "name": "MECE in Business Communication",
        "description": "How to use MECE principles to structure clear and effective business communication.",
        "content": "<h2>Clear Communication with MECE</h2><p>MECE improves business communication.</p>",
        "key_takeaways": "MECE creates clear, logical communication structure",
    },
]

FRAMEWORKS = [
    (1, "MECE Framework", "Mutually Exclusive, Collectively Exhaustive problem structuring"),
    (2, "SWOT Analysis", "Strengths, weaknesses, opportunities and threats"),
    (3, "Porter's Five Forces", "Industry competition analysis"),
]

LEVEL_QUIZ_IDS = {"beginner": 0, "intermediate": 1, "advanced": 2}


def quiz_id_for(framework_id: int, level: str) -> int:
    return framework_id * 10 + LEVEL_QUIZ_IDS[level]


def questions_payload(count: int, topic: str = "MECE", wrap: bool = True) -> str:
    payload = {
        "questions": [
            {
                "question": f"Which statement about {topic} is correct? ({i + 1})",
                "options": [f"{topic} option {i}-{n}" for n in range(4)],
                "correctAnswer": i % 4,
                "explanation": f"{topic} buckets must not overlap and must cover everything.",
            }
            for i in range(count)
        ]
    }
    text = json.dumps(payload, indent=2)
    if wrap:
        return f"Here are your questions:\n```json\n{text}\n```\nLet me know if you need more."
    return text


class FakeLLM:
    """Stands in for the chat model; replays scripted responses or exceptions."""

    def __init__(self, responses=None, default=None):
        self.responses = list(responses or [])
        self.default = default
        self.prompts = []

    def invoke(self, prompt):
        self.prompts.append(prompt)
        item = self.responses.pop(0) if self.responses else self.default
        if isinstance(item, Exception):
            raise item
        if callable(item):
            item = item(prompt)
        return SimpleNamespace(content=item)


class ScriptedController:
    """Retry controller stand-in: raises scripted errors per (framework, level), else fallback questions."""

    def __init__(self, failures=None):
        self.failures = {key: list(errors) for key, errors in (failures or {}).items()}
        self.calls = []

    def generate(self, framework_name, level, context, question_count):
        level = getattr(level, "value", level)
        self.calls.append((framework_name, level))
        pending = self.failures.get((framework_name, level))
        if pending:
            error = pending.pop(0)
            if error is not None:
                raise error
        return generate_fallback_questions(framework_name, level, question_count)


class RecordingSleep:
    def __init__(self, observer=None):
        self.delays = []
        self.observations = []
        self.observer = observer

    def __call__(self, seconds):
        self.delays.append(seconds)
        if self.observer is not None:
            self.observations.append(self.observer())


@pytest.fixture
def settings(tmp_path):
    return Settings(
        gemini_api_key="test-key",
        database_url=f"sqlite:///{tmp_path / 'quiz.db'}",
        log_file=None,
        questions_per_level={"beginner": 5, "intermediate": 6, "advanced": 7},
    )


@pytest.fixture
def db_service(settings):
    service = DatabaseService(settings=settings)
    yield service
    service.get_engine().dispose()


@pytest.fixture
def repository(db_service):
    return QuizRepository(db_service)


@pytest.fixture
def seeded_repository(repository):
    with repository.SessionLocal.begin() as session:
        for framework_id, name, description in FRAMEWORKS:
            session.add(Framework(id=framework_id, name=name, description=description, level="beginner", duration=60))
        session.flush()

        for order, module in enumerate(MECE_MODULES, start=1):
            session.add(Module(framework_id=1, order=order, **module))
        session.add(Module(framework_id=2, order=1, name="SWOT Basics", description="Four quadrants", content="Internal and external factors"))
        session.add(Module(framework_id=3, order=1, name="Five Forces", description="Competitive pressure", content="Rivalry, entrants, substitutes"))

        for framework_id, name, _ in FRAMEWORKS:
            for level in LEVEL_QUIZ_IDS:
                session.add(Quiz(
                    id=quiz_id_for(framework_id, level),
                    framework_id=framework_id,
                    title=f"{name} {level} quiz",
                    description=f"{level} assessment",
                    level=level,
                    questions="[]",
                    question_count=0,
                    time_limit=600,
                    passing_score=70,
                ))
    return repository
