import pytest

from services.content_source import ContentSource, build_module_context
from services.errors import DataError


def test_mece_context_contains_every_module_in_order(seeded_repository):
    framework, context = ContentSource(seeded_repository).load(1)

    assert framework["name"] == "MECE Framework"
    positions = [context.index(f"Module: {name}") for name in (
        "MECE Fundamentals", "Building MECE Issue Trees", "MECE in Business Communication"
    )]
    assert positions == sorted(positions)
    assert "Issue trees visually organize problems into MECE categories" in context


def test_module_block_layout():
    context = build_module_context([
        {"name": "One", "description": "First", "content": None, "key_takeaways": "Take"},
        {"name": "Two", "description": "Second", "content": "Body", "key_takeaways": None},
    ])
    assert context == "Module: One\nFirst\n\nTake\n\nModule: Two\nSecond\nBody\n\n"


def test_long_context_is_truncated_with_marker():
    modules = [{"name": "Big", "description": "x" * 9000, "content": "", "key_takeaways": ""}]
    context = build_module_context(modules, max_length=8000)
    assert len(context) == 8003
    assert context.endswith("...")


def test_short_context_is_not_marked():
    assert not build_module_context([{"name": "Small", "description": "d"}]).endswith("...")


def test_missing_framework_is_a_data_error(seeded_repository):
    with pytest.raises(DataError):
        ContentSource(seeded_repository).load(404)
