import logging
from typing import Any, Dict, List, Optional

from langchain_core.prompts import PromptTemplate
from langchain_google_genai import ChatGoogleGenerativeAI
from pydantic import ValidationError

from config import Settings, get_settings
from models import Question, QuizLevel
from services.errors import MalformedResponse, QuestionValidationError, RateLimited, TransportError
from services.json_scanner import extract_json_object

logger = logging.getLogger(__name__)

RATE_LIMIT_MARKERS = ("429", "rate limit", "ratelimit", "quota", "resource exhausted", "resource_exhausted")

LEVEL_GUIDANCE = {
    QuizLevel.BEGINNER: "focus on core concepts and basic applications",
    QuizLevel.INTERMEDIATE: "include scenario-based questions that test deeper understanding",
    QuizLevel.ADVANCED: "include complex scenarios, edge cases and strategic applications",
}

QUIZ_PROMPT = PromptTemplate(
    template="""As an expert in business frameworks, create {question_count} unique multiple-choice questions for a {level} level quiz about the {framework_name} framework.

Use the following module content as source material for the questions:
{context}

For each question:
1. Make the question relevant to the framework and appropriate for {level} level ({guidance})
2. Provide exactly 4 distinct possible answers
3. Indicate the correct answer as an index (0 for the first option, 3 for the last)
4. Include a brief explanation of the correct answer

Return the results in the following JSON format:
{{
  "questions": [
    {{
      "question": "Question text",
      "options": ["option a", "option b", "option c", "option d"],
      "correctAnswer": 0,
      "explanation": "Explanation why the correct answer is right"
    }}
  ]
}}

Questions must be clear, unambiguous and have only one correct answer.""",
    input_variables=["framework_name", "level", "question_count", "context", "guidance"],
)


def classify_api_error(error: Exception) -> Exception:
    """Map an exception raised by the generation API onto the pipeline taxonomy"""
    status = getattr(error, "status_code", None) or getattr(error, "code", None)
    message = f"{type(error).__name__}: {error}".lower()

    if status == 429 or any(marker in message for marker in RATE_LIMIT_MARKERS):
        return RateLimited(str(error))
    return TransportError(str(error))


class LLMService:
    """Generates quiz questions for a framework level with Gemini"""

    def __init__(self, llm: Optional[Any] = None, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

        if llm is None:
            if not self.settings.gemini_api_key:
                raise ValueError("GEMINI_API_KEY or GOOGLE_API_KEY environment variable is required")

            llm = ChatGoogleGenerativeAI(
                model=self.settings.gemini_model,
                google_api_key=self.settings.gemini_api_key,
                temperature=self.settings.temperature,
                max_output_tokens=self.settings.max_output_tokens,
                # one request per call; RetryController owns retries and backoff
                max_retries=1,
            )

        self.llm = llm

    def build_prompt(self, framework_name: str, level: QuizLevel, context: str, question_count: int) -> str:
        level = QuizLevel(level)
        return QUIZ_PROMPT.format(
            framework_name=framework_name,
            level=level.value,
            question_count=question_count,
            context=context,
            guidance=LEVEL_GUIDANCE[level],
        )

    def _invoke_llm(self, prompt_text: str) -> str:
        try:
            response = self.llm.invoke(prompt_text)
        except Exception as e:
            raise classify_api_error(e) from e

        if isinstance(response, str):
            return response
        content = getattr(response, "content", None)
        if isinstance(content, str):
            return content
        if isinstance(content, list):
            pieces = []
            for item in content:
                if isinstance(item, dict) and item.get("type") == "text":
                    pieces.append(item.get("text", ""))
                elif isinstance(item, str):
                    pieces.append(item)
            return "".join(pieces)
        return str(response)

    def generate_questions(
        self,
        framework_name: str,
        level: QuizLevel,
        context: str,
        question_count: int,
    ) -> List[Question]:
        """
        Ask the model for ``question_count`` questions and validate the answer.

        Raises:
            RateLimited: the API reported quota exhaustion
            MalformedResponse: no usable JSON, or a question with the wrong shape
            TransportError: any other failure of the API call
        """
        logger.info(f"Generating {QuizLevel(level).value} level questions for {framework_name}...")
        prompt_text = self.build_prompt(framework_name, level, context, question_count)
        response_text = self._invoke_llm(prompt_text)
        payload = extract_json_object(response_text)
        return self.parse_questions(payload, question_count)

    @staticmethod
    def parse_questions(payload: Dict[str, Any], question_count: int) -> List[Question]:
        raw_questions = payload.get("questions")
        if not isinstance(raw_questions, list) or not raw_questions:
            raise MalformedResponse("Response does not contain a non-empty 'questions' array")

        if len(raw_questions) < question_count:
            raise MalformedResponse(f"Expected {question_count} questions, got {len(raw_questions)}")
        if len(raw_questions) > question_count:
            logger.warning(f"Expected {question_count} questions, got {len(raw_questions)}; keeping the first {question_count}")
            raw_questions = raw_questions[:question_count]

        questions = []
        for i, item in enumerate(raw_questions):
            if not isinstance(item, dict):
                raise QuestionValidationError(f"Question {i} must be an object")
            try:
                questions.append(Question.model_validate({**item, "id": i + 1}))
            except ValidationError as e:
                raise QuestionValidationError(f"Question {i} is invalid: {e}") from e

        logger.info(f"Quiz validation passed: {len(questions)} questions validated")
        return questions


llm_service = None

def get_llm_service() -> LLMService:
    """Get or create the global LLM service instance"""
    global llm_service
    if llm_service is None:
        llm_service = LLMService()
    return llm_service
