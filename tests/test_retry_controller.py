import pytest

from models import QuizLevel
from services.errors import MalformedResponse, QuestionValidationError, RateLimited, TransportError
from services.retry_controller import RetryController, generate_fallback_questions, rate_limit_delay
from tests.conftest import RecordingSleep


class ScriptedGenerator:
    def __init__(self, outcomes, default=None):
        self.outcomes = list(outcomes)
        self.default = default
        self.calls = 0

    def generate_questions(self, framework_name, level, context, question_count):
        self.calls += 1
        outcome = self.outcomes.pop(0) if self.outcomes else self.default
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


GENERATED = generate_fallback_questions("MECE", QuizLevel.BEGINNER, 3)


def make_controller(generator):
    sleep = RecordingSleep()
    return RetryController(generator, max_attempts=5, sleep=sleep), sleep


def test_rate_limit_backs_off_exponentially_until_success():
    generator = ScriptedGenerator([RateLimited("429")] * 4 + [GENERATED])
    controller, sleep = make_controller(generator)

    result = controller.generate("MECE", QuizLevel.BEGINNER, "ctx", 3)

    assert result == GENERATED
    assert generator.calls == 5
    assert sleep.delays == [1.0, 2.0, 4.0, 8.0]


def test_delay_schedule():
    assert [rate_limit_delay(a) for a in range(5)] == [1.0, 2.0, 4.0, 8.0, 16.0]


def test_malformed_responses_fall_back_after_five_attempts():
    generator = ScriptedGenerator([], default=MalformedResponse("no json"))
    controller, sleep = make_controller(generator)

    result = controller.generate("MECE", QuizLevel.INTERMEDIATE, "ctx", 7)

    assert generator.calls == 5
    assert sleep.delays == [2.0, 2.0, 2.0, 2.0]
    assert len(result) == 7
    assert all("MECE" in q.text for q in result)


def test_persistent_rate_limit_degrades_instead_of_raising():
    generator = ScriptedGenerator([], default=RateLimited("quota"))
    controller, sleep = make_controller(generator)

    result = controller.generate("SWOT", QuizLevel.ADVANCED, "ctx", 4)

    assert generator.calls == 5
    assert sleep.delays == [1.0, 2.0, 4.0, 8.0]
    assert [q.correct_answer for q in result] == [0, 1, 2, 3]


def test_validation_errors_retry_like_malformed_responses():
    generator = ScriptedGenerator([QuestionValidationError("3 options"), GENERATED])
    controller, sleep = make_controller(generator)

    assert controller.generate("MECE", QuizLevel.BEGINNER, "ctx", 3) == GENERATED
    assert sleep.delays == [2.0]


def test_mixed_failures_use_each_policy():
    generator = ScriptedGenerator([RateLimited("429"), MalformedResponse("bad"), RateLimited("429"), GENERATED])
    controller, sleep = make_controller(generator)

    controller.generate("MECE", QuizLevel.BEGINNER, "ctx", 3)

    assert sleep.delays == [1.0, 2.0, 4.0]


def test_transport_error_propagates_immediately():
    generator = ScriptedGenerator([TransportError("connection refused"), GENERATED])
    controller, sleep = make_controller(generator)

    with pytest.raises(TransportError):
        controller.generate("MECE", QuizLevel.BEGINNER, "ctx", 3)
    assert generator.calls == 1
    assert sleep.delays == []


def test_unclassified_errors_are_not_masked():
    generator = ScriptedGenerator([KeyError("questions")])
    controller, _ = make_controller(generator)

    with pytest.raises(KeyError):
        controller.generate("MECE", QuizLevel.BEGINNER, "ctx", 3)


def test_fallback_questions_are_structurally_valid():
    questions = generate_fallback_questions("MECE Framework", "beginner", 6)

    assert [q.id for q in questions] == [1, 2, 3, 4, 5, 6]
    assert [q.correct_answer for q in questions] == [0, 1, 2, 3, 0, 1]
    assert questions[1].options == [f"MECE Framework principle {n}" for n in range(5, 9)]
    assert "(beginner level)" in questions[0].text
    assert generate_fallback_questions("MECE", "beginner", 6) == generate_fallback_questions("MECE", "beginner", 6)


def test_max_attempts_must_be_positive():
    with pytest.raises(ValueError):
        RetryController(ScriptedGenerator([]), max_attempts=0)
