from unittest import mock

import regenerate_quizzes
from regenerate_quizzes import RegenerationConfig, parse_args, run
from services.batch_driver import BatchResult
from services.cache_service import CacheService
from services.llm_service import LLMService
from tests.conftest import FakeLLM, RecordingSleep, questions_payload, quiz_id_for


def make_config(repository, settings, llm, **overrides):
    return RegenerationConfig(
        settings=settings,
        repository=repository,
        generator=LLMService(llm=llm, settings=settings),
        cache=CacheService.disabled(),
        sleep=RecordingSleep(),
        **overrides,
    )


def test_run_regenerates_all_frameworks_with_injected_collaborators(seeded_repository, settings):
    llm = FakeLLM(default=lambda prompt: questions_payload(20))

    result = run(make_config(seeded_repository, settings, llm))

    assert result.frameworks_total == 3
    assert result.frameworks_completed == 3
    assert len(llm.prompts) == 9
    quiz = seeded_repository.get_quiz(quiz_id_for(1, "advanced"))
    assert quiz["question_count"] == len(quiz["questions"]) == 7
    assert quiz["questions"][0]["question"].startswith("Which statement about MECE")


def test_run_single_framework(seeded_repository, settings):
    llm = FakeLLM(default=lambda prompt: questions_payload(20))

    result = run(make_config(seeded_repository, settings, llm, framework_id=2))

    assert result.frameworks_total == 1
    assert all("SWOT Analysis" in prompt for prompt in llm.prompts)
    assert seeded_repository.get_quiz(quiz_id_for(1, "beginner"))["question_count"] == 0


def test_rate_limited_generation_falls_back(seeded_repository, settings):
    llm = FakeLLM(default=Exception("429 Resource exhausted"))
    config = make_config(seeded_repository, settings, llm, framework_id=1)

    run(config)

    quiz = seeded_repository.get_quiz(quiz_id_for(1, "beginner"))
    assert quiz["question_count"] == 5
    assert "fallback" in quiz["questions"][0]["explanation"]
    assert config.sleep.delays[:4] == [1.0, 2.0, 4.0, 8.0]


def test_main_exit_codes():
    with mock.patch.object(regenerate_quizzes, "run", return_value=BatchResult(frameworks_total=1, frameworks_completed=1)):
        assert regenerate_quizzes.main([]) == 0

    with mock.patch.object(regenerate_quizzes, "run", side_effect=RuntimeError("database unreachable")):
        assert regenerate_quizzes.main([]) == 1


def test_main_passes_arguments():
    with mock.patch.object(regenerate_quizzes, "run", return_value=BatchResult()) as fake_run:
        regenerate_quizzes.main(["--framework", "4", "--no-resume"])

    config = fake_run.call_args.args[0]
    assert config.framework_id == 4
    assert config.resume is False


def test_parse_args_defaults():
    args = parse_args([])
    assert args.framework is None
    assert args.no_resume is False
