"""Reader for heading-based Markdown outlines.

Structure rules:

- ``# Heading`` opens a chapter.
- ``## Heading`` opens a scene, ignored until a chapter is open.
- List items, paragraphs, code blocks and ``###``+ headings become beats,
  ignored until a scene is open. Setext headings count as paragraphs.
- A block quote directly under a scene heading becomes the scene synopsis.
- Optional YAML frontmatter supplies ``title``, ``author``,
  ``description`` and ``wordTarget``.

Markdown has no native ids, so source ids are positional:
``md:ch<i>``, ``md:ch<i>:sc<j>``, ``md:ch<i>:sc<j>:b<k>``. Renaming a
heading therefore shows up as a title change on reimport; inserting or
reordering scenes shifts every id after the edit.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import mistune
import yaml

from kindling_sync.file_handler import (
    load_frontmatter,
    read_file_with_encoding,
    split_frontmatter,
    validate_source_path,
)
from kindling_sync.models import (
    ParsedBeat,
    ParsedChapter,
    ParsedProject,
    ParsedScene,
    SourceFormat,
)
from kindling_sync.readers.base import ProgressCallback

logger = logging.getLogger(__name__)


class PlainTextRenderer(mistune.BaseRenderer):
    """Render inline mistune tokens to plain text (markup dropped)."""

    NAME = "plaintext"

    def text(self, text: str) -> str:
        return text

    def emphasis(self, text: str) -> str:
        return text

    def strong(self, text: str) -> str:
        return text

    def codespan(self, text: str) -> str:
        return text

    def link(self, text: str, **attrs) -> str:
        return text

    def image(self, text: str, **attrs) -> str:
        return text

    def inline_html(self, html: str) -> str:
        return ""

    def linebreak(self) -> str:
        return "\n"

    def softbreak(self) -> str:
        return "\n"

    def render_token(self, token: dict[str, Any], state) -> str:
        """Dispatch on token type, rendering children before the handler.

        Token types without a handler (plugin output) render their
        children, or their raw text.
        """
        token_type: str = token.get("type") or ""
        try:
            func = self._get_method(token_type)
        except AttributeError:
            func = None

        if "raw" in token:
            text = token["raw"]
        elif "children" in token:
            text = self.render_tokens(token["children"], state)
        else:
            return func() if func is not None else ""

        if func is None:
            return text
        attrs = token.get("attrs")
        if attrs:
            return func(text, **attrs)
        return func(text)


class _OutlineBuilder:
    """Accumulates chapters/scenes/beats while walking block tokens."""

    def __init__(self) -> None:
        self.chapters: list[ParsedChapter] = []
        self.chapter: ParsedChapter | None = None
        self.scene: ParsedScene | None = None
        self.awaiting_synopsis = False

    def open_chapter(self, title: str) -> None:
        index = len(self.chapters)
        self.chapter = ParsedChapter(
            source_id=f"md:ch{index}", title=title, position=index
        )
        self.chapters.append(self.chapter)
        self.scene = None
        self.awaiting_synopsis = False

    def open_scene(self, title: str) -> None:
        if self.chapter is None:
            logger.debug("Ignoring scene %r: no chapter open", title)
            self.scene = None
            return
        index = len(self.chapter.scenes)
        self.scene = ParsedScene(
            source_id=f"{self.chapter.source_id}:sc{index}",
            title=title,
            position=index,
        )
        self.chapter.scenes.append(self.scene)
        self.awaiting_synopsis = True

    def add_beat(self, content: str) -> None:
        self.awaiting_synopsis = False
        content = content.strip()
        if not content or self.scene is None:
            return
        index = len(self.scene.beats)
        self.scene.beats.append(
            ParsedBeat(
                source_id=f"{self.scene.source_id}:b{index}",
                content=content,
                position=index,
            )
        )

    def set_synopsis(self, text: str) -> None:
        self.awaiting_synopsis = False
        if self.scene is not None and text.strip():
            self.scene.synopsis = text.strip()


class MarkdownReader:
    """Parse a heading-based Markdown outline into a ``ParsedProject``."""

    format = SourceFormat.MARKDOWN

    def __init__(self) -> None:
        self._markdown = mistune.create_markdown(renderer="ast")
        self._inline = PlainTextRenderer()

    def parse(
        self,
        path: str | Path,
        progress: ProgressCallback | None = None,
    ) -> ParsedProject:
        resolved = validate_source_path(path)
        text, encoding = read_file_with_encoding(resolved)
        logger.debug("Read %s as %s", resolved.name, encoding)

        project = self.parse_text(text, fallback_title=resolved.stem)
        project.source_path = str(path)
        if progress is not None:
            progress(1, 1, resolved.name)
        return project

    def parse_text(
        self, text: str, fallback_title: str = "Untitled"
    ) -> ParsedProject:
        """Parse Markdown already in memory."""
        raw_meta, body = split_frontmatter(text)
        try:
            meta = load_frontmatter(raw_meta)
        except (yaml.YAMLError, ValueError) as exc:
            logger.warning("Ignoring unreadable frontmatter: %s", exc)
            meta = {}

        builder = _OutlineBuilder()
        tokens = self._markdown(body)
        self._walk(tokens, builder)  # type: ignore[arg-type]

        if not builder.chapters:
            builder.open_chapter("")

        word_target = meta.get("wordTarget", meta.get("word_target"))
        return ParsedProject(
            title=_meta_str(meta, "title") or fallback_title,
            source_format=self.format,
            source_path="",
            author=_meta_str(meta, "author"),
            description=_meta_str(meta, "description"),
            word_target=word_target if isinstance(word_target, int) else None,
            chapters=builder.chapters,
        )

    # ------------------------------------------------------------------
    # Block walk
    # ------------------------------------------------------------------

    def _walk(self, tokens: list[dict], builder: _OutlineBuilder) -> None:
        for token in tokens:
            kind = token.get("type")
            if kind == "blank_line":
                continue
            if kind == "heading":
                self._heading(token, builder)
            elif kind == "block_quote":
                text = self._block_text(token.get("children") or [])
                if builder.awaiting_synopsis:
                    builder.set_synopsis(text)
                else:
                    builder.add_beat(text)
            elif kind == "list":
                for item in self._list_items(token):
                    builder.add_beat(item)
            elif kind == "paragraph":
                builder.add_beat(self._render(token.get("children") or []))
            elif kind == "block_code":
                builder.add_beat(str(token.get("raw") or "").rstrip("\n"))
            else:
                # thematic breaks, raw HTML, comments
                builder.awaiting_synopsis = False

    def _heading(self, token: dict, builder: _OutlineBuilder) -> None:
        title = self._render(token.get("children") or []).strip()
        level = (token.get("attrs") or {}).get("level", 1)
        if token.get("style") == "setext" or level >= 3:
            builder.add_beat(title)
        elif level == 1:
            builder.open_chapter(title)
        else:
            builder.open_scene(title)

    def _list_items(self, token: dict) -> list[str]:
        """Flatten a (possibly nested) list into item texts, depth first."""
        items: list[str] = []
        for item in token.get("children") or []:
            nested: list[dict] = []
            parts: list[str] = []
            for child in item.get("children") or []:
                if child.get("type") == "list":
                    nested.append(child)
                else:
                    parts.append(self._render(child.get("children") or []))
            items.append("\n".join(p for p in parts if p.strip()))
            for sub in nested:
                items.extend(self._list_items(sub))
        return items

    def _block_text(self, tokens: list[dict]) -> str:
        parts: list[str] = []
        for token in tokens:
            if token.get("type") == "list":
                parts.extend(self._list_items(token))
            elif "raw" in token and token.get("type") == "block_code":
                parts.append(str(token["raw"]).rstrip("\n"))
            elif "children" in token:
                parts.append(self._render(token["children"]))
        return "\n".join(p for p in parts if p.strip())

    def _render(self, children: list[dict]) -> str:
        return self._inline.render_tokens(children, None)


def _meta_str(meta: dict, key: str) -> str | None:
    value = meta.get(key)
    if value is None:
        return None
    text = str(value).strip()
    return text or None
