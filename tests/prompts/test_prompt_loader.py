import pytest

from sqlagent.prompts.loader import PromptLoader, split_front_matter


def test_prompt_loader_strips_front_matter():
    loader = PromptLoader()
    content = loader.load("sql/schema_summary.md")
    assert not content.startswith("---")
    assert "concise 2-3 sentence summary" in content


def test_prompt_metadata_carries_sampling_parameters():
    loader = PromptLoader()
    assert loader.get_metadata("sql/generate_query.md")["temperature"] == 0.1
    assert loader.get_metadata("sql/generate_query.md")["max_tokens"] == 2000
    assert loader.get_metadata("sql/explain_query.md")["max_tokens"] == 500
    assert loader.get_metadata("sql/schema_summary.md")["max_tokens"] == 200


def test_prompt_loader_renders_template():
    loader = PromptLoader()
    rendered = loader.render(
        "sql/explain_query.md", dialect="postgresql", sql="SELECT COUNT(*) FROM orders"
    )
    assert "postgresql query" in rendered
    assert "SELECT COUNT(*) FROM orders" in rendered
    assert "temperature" not in rendered


def test_prompt_loader_rejects_missing_variables():
    loader = PromptLoader()
    with pytest.raises(Exception, match="sql"):
        loader.render("sql/explain_query.md", dialect="postgresql")


def test_prompt_loader_missing_template():
    loader = PromptLoader()
    with pytest.raises(FileNotFoundError):
        loader.load("sql/nope.md")
    with pytest.raises(FileNotFoundError):
        loader.render("sql/nope.md")


def test_custom_prompts_dir(tmp_path):
    (tmp_path / "hello.md").write_text("---\ntemperature: 0.5\n---\nHello {{ name }}!")
    loader = PromptLoader(tmp_path)
    assert loader.render("hello.md", name="Ada") == "Hello Ada!"
    assert loader.get_metadata("hello.md") == {"temperature": 0.5}


def test_split_front_matter_without_header():
    assert split_front_matter("plain body") == ({}, "plain body")
