"""Prompt loading and rendering utilities."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from jinja2 import Environment, FileSystemLoader, StrictUndefined, TemplateNotFound

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"


@dataclass(frozen=True)
class PromptEntry:
    """Prompt body and its front-matter metadata."""

    content: str
    metadata: dict[str, Any]


def split_front_matter(source: str) -> tuple[dict[str, Any], str]:
    """Separate a leading ``---`` YAML block from the template body."""
    if source.startswith("---"):
        parts = source.split("---", 2)
        if len(parts) == 3:
            return yaml.safe_load(parts[1]) or {}, parts[2].lstrip()
    return {}, source


class FrontMatterLoader(FileSystemLoader):
    """Jinja2 loader that strips YAML front matter."""

    def get_source(self, environment: Environment, template: str):  # type: ignore[override]
        source, filename, uptodate = super().get_source(environment, template)
        _, body = split_front_matter(source)
        return body, filename, uptodate


class PromptLoader:
    """
    Load and render prompt templates.

    Templates are Markdown files with optional YAML front matter carrying
    sampling parameters (``temperature``, ``max_tokens``).

    Example:
        loader = PromptLoader()
        prompt = loader.render("sql/explain_query.md", dialect="postgresql", sql=sql)
        params = loader.get_metadata("sql/explain_query.md")
    """

    def __init__(self, prompts_dir: str | Path | None = None) -> None:
        self.prompts_dir = Path(prompts_dir) if prompts_dir else TEMPLATES_DIR
        self.cache: dict[str, PromptEntry] = {}
        self._env = Environment(
            loader=FrontMatterLoader(str(self.prompts_dir)),
            trim_blocks=True,
            lstrip_blocks=True,
            undefined=StrictUndefined,
            keep_trailing_newline=False,
        )

    def load(self, prompt_path: str) -> str:
        """Raw prompt body without front matter."""
        return self._entry(prompt_path).content

    def render(self, prompt_path: str, **variables: Any) -> str:
        """Render a prompt with Jinja2."""
        try:
            template = self._env.get_template(prompt_path)
        except TemplateNotFound as exc:
            raise FileNotFoundError(f"Prompt not found: {prompt_path}") from exc
        return template.render(**variables)

    def get_metadata(self, prompt_path: str) -> dict[str, Any]:
        return self._entry(prompt_path).metadata

    def _entry(self, prompt_path: str) -> PromptEntry:
        if prompt_path not in self.cache:
            file_path = self.prompts_dir / prompt_path
            if not file_path.exists():
                raise FileNotFoundError(f"Prompt not found: {file_path}")
            metadata, body = split_front_matter(file_path.read_text(encoding="utf-8"))
            self.cache[prompt_path] = PromptEntry(content=body, metadata=metadata)
        return self.cache[prompt_path]
