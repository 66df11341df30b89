import logging
import time
from typing import Callable, List, Optional

from models import Question, QuizLevel
from services.errors import MalformedResponse, RateLimited
from services.llm_service import LLMService

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 5
MALFORMED_RETRY_DELAY = 2.0


def rate_limit_delay(attempt: int) -> float:
    """Seconds to wait after a rate-limited attempt (0-based): 1, 2, 4, 8, 16"""
    return float(2 ** attempt)


def generate_fallback_questions(framework_name: str, level: QuizLevel, count: int) -> List[Question]:
    """Deterministic placeholder questions used when generation keeps failing"""
    level = QuizLevel(level).value
    logger.warning(f"Generating fallback questions for {framework_name} ({level})")

    return [
        Question(
            id=i + 1,
            text=f"Question {i + 1} about {framework_name} ({level} level): What is a key principle of {framework_name}?",
            options=[f"{framework_name} principle {i * 4 + n}" for n in range(1, 5)],
            correct_answer=i % 4,
            explanation=(
                "This is an automatically generated fallback question because the question generator "
                f"was unavailable. The correct answer demonstrates a key principle of {framework_name}."
            ),
        )
        for i in range(count)
    ]


class RetryController:
    """Bounded retries around the question generator, degrading to fallback questions.

    Rate limiting backs off exponentially and malformed responses wait a fixed
    delay. After the last attempt either failure yields fallback questions
    instead of an error. Transport failures and unclassified exceptions are
    re-raised untouched.
    """

    def __init__(
        self,
        generator: LLMService,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.generator = generator
        self.max_attempts = max_attempts
        self.sleep = sleep or time.sleep

    def generate(self, framework_name: str, level: QuizLevel, context: str, question_count: int) -> List[Question]:
        for attempt in range(self.max_attempts):
            logger.info(f"Attempt {attempt + 1}/{self.max_attempts} for {framework_name} ({QuizLevel(level).value})")
            try:
                return self.generator.generate_questions(framework_name, level, context, question_count)
            except RateLimited as e:
                if attempt == self.max_attempts - 1:
                    logger.warning(f"Rate limit persisted after {self.max_attempts} attempts: {e}")
                    break
                wait_time = rate_limit_delay(attempt)
                logger.warning(f"Rate limit hit. Waiting {wait_time:.0f} seconds before retrying...")
                self.sleep(wait_time)
            except MalformedResponse as e:
                if attempt == self.max_attempts - 1:
                    logger.warning(f"Malformed response after {self.max_attempts} attempts: {e}")
                    break
                logger.warning(f"Malformed response ({e}). Waiting {MALFORMED_RETRY_DELAY:.0f} seconds before retrying...")
                self.sleep(MALFORMED_RETRY_DELAY)

        logger.warning("Maximum retries reached. Using fallback questions.")
        return generate_fallback_questions(framework_name, level, question_count)
