"""Prompt assembly for annotation and genre detection.

Templates live in YAML files next to this module for editability; this
module only fills placeholders and arranges the chat turns.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from pathlib import Path

import yaml

from footnoter.engine.validation import DEFAULT_TAGS, TAG_LEGEND

DEFAULT_GENRE = "other"
GENRE_INTRO_CHARS = 1000

_GENRE_REPLY_RE = re.compile(r"genre:\s*(.+)", re.IGNORECASE)


def fill_template(template: str, replacements: dict[str, str]) -> str:
    """Replace ``{key}`` placeholders without tripping over other braces."""
    result = template
    for key, value in replacements.items():
        result = result.replace("{" + key + "}", str(value))
    return result


class PromptAssembler:
    """Builds chat messages from YAML templates and runtime data."""

    def __init__(
        self,
        templates_dir: Path | None = None,
        tags: Iterable[str] = DEFAULT_TAGS,
        tag_legend: str = TAG_LEGEND,
    ):
        if templates_dir is None:
            templates_dir = Path(__file__).parent / "templates"
        self._templates_dir = templates_dir
        self._templates: dict[str, dict] = {}
        self._tags = "".join(tags)
        self._tag_legend = tag_legend
        self._load_templates()

    def _load_templates(self) -> None:
        """Load all YAML templates from the templates directory."""
        if not self._templates_dir.exists():
            return
        for yaml_file in self._templates_dir.glob("*.yaml"):
            with open(yaml_file, encoding="utf-8") as f:
                self._templates[yaml_file.stem] = yaml.safe_load(f) or {}

    def get_template(self, name: str) -> dict:
        """Get a loaded template by name."""
        if name not in self._templates:
            raise KeyError(f"Template not found: {name}")
        return self._templates[name]

    # --- Annotation ---

    def annotation_prompt(self, chunk: str, genre_guidance: str, recent_terms: list[str]) -> str:
        template = self.get_template("annotation")
        recent_block = ""
        if recent_terms:
            recent_block = fill_template(
                template.get("recent_vocab", "").strip(),
                {"terms": ", ".join(recent_terms)},
            )
        guard = fill_template(
            template.get("output_format_guard", "").strip(),
            {"allowed_tags": self._tags},
        )
        return fill_template(
            template.get("instructions", ""),
            {
                "output_format_guard": guard,
                "recent_vocab_block": recent_block,
                "genre_guidance": genre_guidance,
                "allowed_tags": self._tags,
                "tag_legend": self._tag_legend,
                "chunk": chunk,
            },
        ).strip()

    def annotation_messages(
        self,
        chunk: str,
        genre_guidance: str,
        recent_terms: list[str],
    ) -> list[dict]:
        template = self.get_template("annotation")
        system = fill_template(template.get("system", "").strip(), {"allowed_tags": self._tags})
        return [
            {"role": "system", "content": system},
            {"role": "user", "content": self.annotation_prompt(chunk, genre_guidance, recent_terms)},
        ]

    # --- Genre ---

    @property
    def genres(self) -> list[str]:
        return list(self.get_template("genre").get("guidance", {}))

    def genre_messages(self, text: str) -> list[dict]:
        template = self.get_template("genre")
        user = fill_template(
            template.get("user", ""),
            {"intro": text[:GENRE_INTRO_CHARS], "choices": ", ".join(self.genres)},
        ).strip()
        return [
            {"role": "system", "content": template.get("system", "").strip()},
            {"role": "user", "content": user},
        ]

    @staticmethod
    def parse_genre(reply: str) -> str:
        match = _GENRE_REPLY_RE.search(reply or "")
        if not match:
            return DEFAULT_GENRE
        return match.group(1).strip().strip("[]").strip().lower() or DEFAULT_GENRE

    def genre_guidance(self, genre: str) -> str:
        guidance = self.get_template("genre").get("guidance", {})
        return guidance.get(genre.lower(), guidance.get(DEFAULT_GENRE, ""))
