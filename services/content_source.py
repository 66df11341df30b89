import logging
from typing import Any, Dict, List, Tuple

from services.errors import DataError
from services.quiz_repository import QuizRepository

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONTENT_LENGTH = 8000
TRUNCATION_MARKER = "..."


def build_module_context(modules: List[Dict[str, Any]], max_length: int = DEFAULT_MAX_CONTENT_LENGTH) -> str:
    """Concatenate module text into one generation context, truncated to ``max_length``."""
    context = "\n".join(
        f"Module: {m.get('name') or ''}\n"
        f"{m.get('description') or ''}\n"
        f"{m.get('content') or ''}\n"
        f"{m.get('key_takeaways') or ''}\n"
        for m in modules
    )

    if len(context) > max_length:
        context = context[:max_length] + TRUNCATION_MARKER
    return context


class ContentSource:
    """Reads a framework and its modules and turns them into generation context"""

    def __init__(self, repository: QuizRepository, max_length: int = DEFAULT_MAX_CONTENT_LENGTH):
        self.repository = repository
        self.max_length = max_length

    def load(self, framework_id: int) -> Tuple[Dict[str, Any], str]:
        framework = self.repository.get_framework(framework_id)
        if framework is None:
            raise DataError(f"Framework with ID {framework_id} not found")

        modules = self.repository.get_modules(framework_id)
        if not modules:
            logger.warning(f"Framework {framework['name']} has no modules, context will be empty")

        context = build_module_context(modules, self.max_length)
        logger.info(f"Built {len(context)} characters of context from {len(modules)} modules for {framework['name']}")
        return framework, context
