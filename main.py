from fastapi import FastAPI, HTTPException, BackgroundTasks, Depends
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from typing import List, Optional, Dict, Any, Callable
from datetime import datetime
import threading
import re

import bleach
import structlog
from sentry_sdk.integrations.fastapi import FastApiIntegration

from config import get_settings
from logging_setup import configure_logging, init_sentry
from models import QuizLevel
from regenerate_quizzes import RegenerationConfig, run as run_regeneration
from services.cache_service import CacheKeys, CacheService, get_cache_service
from services.quiz_repository import QuizRepository, get_quiz_repository


settings = get_settings()
configure_logging(settings.log_file)
logger = structlog.get_logger(__name__)
init_sentry(settings, integrations=[FastApiIntegration()])


def sanitize_user_input(text: str, max_length: int = 200) -> str:
    """Strip markup and control characters from a free-text query parameter"""
    if not text:
        return ""

    if len(text) > max_length:
        text = text[:max_length]

    text = bleach.clean(
        text,
        tags=[],
        attributes={},
        strip=True
    )

    text = re.sub(r'[<>\'"\x00-\x1f\x7f-\x9f]', '', text)

    return text.strip()


app = FastAPI(
    title="QuestionPro AI Quiz API",
    description="Business framework courses, quizzes and AI quiz regeneration",
    version="1.0.0"
)


app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:5174", "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class FrameworkResponse(BaseModel):
    id: int
    name: str
    description: str
    level: str
    duration: int
    status: str
    case_studies: Optional[str] = None

class ModuleResponse(BaseModel):
    id: int
    framework_id: int
    name: str
    description: str
    content: Optional[str] = None
    examples: Optional[str] = None
    key_takeaways: Optional[str] = None
    order: int
    completed: bool

class QuizResponse(BaseModel):
    id: int
    framework_id: int
    title: str
    description: str
    level: str
    questions: List[Dict[str, Any]]
    question_count: int
    time_limit: int
    passing_score: int
    is_active: bool

class SubmitQuizAttemptRequest(BaseModel):
    user_id: int
    quiz_id: int
    answers: List[int]
    time_taken: Optional[int] = Field(default=None, ge=0)

class QuizAttemptResponse(BaseModel):
    id: int
    user_id: int
    quiz_id: int
    answers: List[int]
    score: int
    max_score: int
    passed: bool
    time_taken: Optional[int] = None
    completed_at: str

class RegenerateRequest(BaseModel):
    framework_id: Optional[int] = None
    resume: bool = True


regeneration_lock = threading.Lock()
regeneration_state: Dict[str, Any] = {"running": False, "started_at": None, "last_error": None}


def get_repository() -> QuizRepository:
    return get_quiz_repository()

def get_cache() -> CacheService:
    return get_cache_service()

def get_regeneration_runner() -> Callable[[RegenerationConfig], Any]:
    return run_regeneration


def grade_attempt(quiz: Dict[str, Any], answers: List[int]) -> Dict[str, Any]:
    """Score answers against the quiz's correct answer indexes"""
    questions = quiz["questions"]
    score = sum(1 for question, answer in zip(questions, answers) if answer == question.get("correctAnswer"))
    max_score = len(questions)
    percentage = (score / max_score) * 100 if max_score else 0
    return {"score": score, "max_score": max_score, "passed": percentage >= quiz["passing_score"]}


def _run_regeneration_job(runner: Callable[[RegenerationConfig], Any], config: RegenerationConfig) -> None:
    try:
        result = runner(config)
        logger.info(f"Background regeneration finished: {result}")
        regeneration_state["last_error"] = None
    except Exception as e:
        logger.error(f"Background regeneration failed: {e}", exc_info=True)
        regeneration_state["last_error"] = str(e)
    finally:
        with regeneration_lock:
            regeneration_state["running"] = False


@app.get("/")
async def root():
    return {"message": "QuestionPro AI Quiz API", "version": "1.0.0"}

@app.get("/api/frameworks", response_model=List[FrameworkResponse])
def list_frameworks(
    search: Optional[str] = None,
    repository: QuizRepository = Depends(get_repository),
    cache: CacheService = Depends(get_cache),
):
    try:
        if search:
            search = sanitize_user_input(search)
            return repository.list_frameworks(search)
        return cache.get_or_set(CacheKeys.FRAMEWORKS, repository.list_frameworks)
    except Exception as e:
        logger.error(f"Error fetching frameworks: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Failed to fetch frameworks: {str(e)}")

@app.get("/api/frameworks/{framework_id}", response_model=FrameworkResponse)
def get_framework(
    framework_id: int,
    repository: QuizRepository = Depends(get_repository),
    cache: CacheService = Depends(get_cache),
):
    try:
        framework = cache.get_or_set(
            CacheKeys.framework(framework_id), lambda: repository.get_framework(framework_id)
        )
        if not framework:
            raise HTTPException(status_code=404, detail="Framework not found")
        return framework
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error fetching framework {framework_id}: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Failed to fetch framework: {str(e)}")

@app.get("/api/frameworks/{framework_id}/modules", response_model=List[ModuleResponse])
def get_framework_modules(
    framework_id: int,
    repository: QuizRepository = Depends(get_repository),
    cache: CacheService = Depends(get_cache),
):
    try:
        if not repository.get_framework(framework_id):
            raise HTTPException(status_code=404, detail="Framework not found")
        return cache.get_or_set(CacheKeys.modules(framework_id), lambda: repository.get_modules(framework_id))
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error fetching modules for framework {framework_id}: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Failed to fetch modules: {str(e)}")

@app.get("/api/quizzes/framework/{framework_id}", response_model=List[QuizResponse])
def get_framework_quizzes(
    framework_id: int,
    level: Optional[QuizLevel] = None,
    repository: QuizRepository = Depends(get_repository),
    cache: CacheService = Depends(get_cache),
):
    try:
        level_value = level.value if level else None
        return cache.get_or_set(
            CacheKeys.quizzes(framework_id, level_value),
            lambda: repository.get_quizzes_by_framework(framework_id, level_value),
        )
    except Exception as e:
        logger.error(f"Error fetching quizzes for framework {framework_id}: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Failed to fetch quizzes: {str(e)}")

@app.get("/api/quizzes/{quiz_id}", response_model=QuizResponse)
def get_quiz(
    quiz_id: int,
    repository: QuizRepository = Depends(get_repository),
    cache: CacheService = Depends(get_cache),
):
    try:
        logger.info(f"Fetching quiz: {quiz_id}")
        quiz = cache.get_or_set(CacheKeys.quiz(quiz_id), lambda: repository.get_quiz(quiz_id))
        if not quiz:
            raise HTTPException(status_code=404, detail="Quiz not found")
        return quiz
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error fetching quiz {quiz_id}: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Failed to fetch quiz: {str(e)}")

@app.post("/api/quiz-attempts", response_model=QuizAttemptResponse, status_code=201)
def submit_quiz_attempt(
    request: SubmitQuizAttemptRequest,
    repository: QuizRepository = Depends(get_repository),
    cache: CacheService = Depends(get_cache),
):
    """
    Grade and record a quiz attempt
    """
    try:
        quiz = repository.get_quiz(request.quiz_id)
        if not quiz:
            raise HTTPException(status_code=404, detail="Quiz not found")

        if len(request.answers) != len(quiz["questions"]):
            raise HTTPException(
                status_code=400,
                detail=f"Expected {len(quiz['questions'])} answers, got {len(request.answers)}"
            )

        grade = grade_attempt(quiz, request.answers)
        attempt = repository.create_quiz_attempt(
            user_id=request.user_id,
            quiz_id=request.quiz_id,
            answers=request.answers,
            time_taken=request.time_taken,
            **grade,
        )

        cache.invalidate(
            CacheKeys.quiz_attempts(request.quiz_id),
            CacheKeys.user_quiz_attempts(request.user_id),
        )
        return attempt

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error creating quiz attempt: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Failed to submit quiz attempt: {str(e)}")

@app.get("/api/quiz-attempts/quiz/{quiz_id}", response_model=List[QuizAttemptResponse])
def get_quiz_attempts(
    quiz_id: int,
    repository: QuizRepository = Depends(get_repository),
    cache: CacheService = Depends(get_cache),
):
    try:
        return cache.get_or_set(
            CacheKeys.quiz_attempts(quiz_id), lambda: repository.get_quiz_attempts_by_quiz(quiz_id), ttl=300
        )
    except Exception as e:
        logger.error(f"Error fetching attempts for quiz {quiz_id}: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Failed to fetch quiz attempts: {str(e)}")

@app.get("/api/quiz-attempts/user/{user_id}", response_model=List[QuizAttemptResponse])
def get_user_quiz_attempts(
    user_id: int,
    repository: QuizRepository = Depends(get_repository),
    cache: CacheService = Depends(get_cache),
):
    try:
        return cache.get_or_set(
            CacheKeys.user_quiz_attempts(user_id), lambda: repository.get_user_quiz_attempts(user_id), ttl=300
        )
    except Exception as e:
        logger.error(f"Error fetching attempts for user {user_id}: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Failed to fetch quiz attempts: {str(e)}")

@app.post("/api/admin/quizzes/regenerate", status_code=202)
def regenerate_quizzes(
    request: RegenerateRequest,
    background_tasks: BackgroundTasks,
    repository: QuizRepository = Depends(get_repository),
    cache: CacheService = Depends(get_cache),
    runner: Callable[[RegenerationConfig], Any] = Depends(get_regeneration_runner),
):
    """
    Start regenerating quiz questions in the background
    """
    if request.framework_id is not None and not repository.get_framework(request.framework_id):
        raise HTTPException(status_code=404, detail="Framework not found")

    with regeneration_lock:
        if regeneration_state["running"]:
            raise HTTPException(status_code=409, detail="Quiz regeneration is already running")
        regeneration_state["running"] = True
        regeneration_state["started_at"] = datetime.utcnow().isoformat()

    config = RegenerationConfig(
        settings=settings,
        framework_id=request.framework_id,
        resume=request.resume,
        repository=repository,
        cache=cache,
    )
    background_tasks.add_task(_run_regeneration_job, runner, config)
    logger.info(f"Scheduled quiz regeneration (framework_id={request.framework_id}, resume={request.resume})")
    return {"status": "scheduled", "framework_id": request.framework_id, "resume": request.resume}

@app.get("/api/admin/quizzes/regeneration-status")
def regeneration_status(repository: QuizRepository = Depends(get_repository)):
    try:
        return {
            "running": regeneration_state["running"],
            "started_at": regeneration_state["started_at"],
            "last_error": regeneration_state["last_error"],
            "checkpoint": repository.get_checkpoint_info(),
        }
    except Exception as e:
        logger.error(f"Regeneration status check failed: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to read regeneration status: {str(e)}")

@app.get("/health")
def health_check(
    repository: QuizRepository = Depends(get_repository),
    cache: CacheService = Depends(get_cache),
):
    """
    Health check endpoint for service monitoring
    """
    database_ok = repository.db_service.test_connection()
    database_info = repository.db_service.get_connection_info() if database_ok else {"status": "disconnected"}
    cache_stats = cache.get_cache_stats()
    llm_status = "configured" if settings.gemini_api_key else "missing_api_key"

    return {
        "status": "healthy" if database_ok else "unhealthy",
        "timestamp": datetime.utcnow().isoformat(),
        "services": {
            "database": database_info,
            "cache": cache_stats,
            "llm": {"status": llm_status, "model": settings.gemini_model},
        },
        "version": "1.0.0"
    }

@app.exception_handler(404)
async def not_found_handler(request, exc):
    return JSONResponse(
        status_code=404,
        content={"error": {"code": "NOT_FOUND", "message": getattr(exc, "detail", "Resource not found"), "timestamp": datetime.utcnow().isoformat()}}
    )

@app.exception_handler(500)
async def internal_server_error_handler(request, exc):
    return JSONResponse(
        status_code=500,
        content={"error": {"code": "INTERNAL_ERROR", "message": "Internal server error", "timestamp": datetime.utcnow().isoformat()}}
    )

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8002)
