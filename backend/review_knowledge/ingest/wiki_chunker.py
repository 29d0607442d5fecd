"""Wiki page HTML conversion, section splitting and chunking."""

from __future__ import annotations

import html
import re
from dataclasses import dataclass

from review_knowledge.ingest.chunker import DEFAULT_OVERLAP_SIZE, DEFAULT_WINDOW_SIZE, sliding_window
from review_knowledge.ingest.types import WikiPageInput
from review_knowledge.models.entities import Chunk
from review_knowledge.retrieval.language import EXTENSION_LANGUAGE_MAP
from review_knowledge.utils.text import count_tokens

MIN_PAGE_CHARS = 500
DEFAULT_LANGUAGE_TAG = "general"

_TEMPLATE_RE = re.compile(r"\{\{[^}]*\}\}")
_PRE_CODE_RE = re.compile(r"<pre[^>]*>\s*<code([^>]*)>(.*?)</code>\s*</pre>", re.IGNORECASE | re.DOTALL)
_PRE_RE = re.compile(r"<pre([^>]*)>(.*?)</pre>", re.IGNORECASE | re.DOTALL)
_INLINE_CODE_RE = re.compile(r"<code[^>]*>(.*?)</code>", re.IGNORECASE | re.DOTALL)
_HEADING_TAG_RE = re.compile(r"<h([2-4])[^>]*>(.*?)</h\1>", re.IGNORECASE | re.DOTALL)
_TABLE_RE = re.compile(r"<table[^>]*>(.*?)</table>", re.IGNORECASE | re.DOTALL)
_ROW_RE = re.compile(r"<tr[^>]*>(.*?)</tr>", re.IGNORECASE | re.DOTALL)
_CELL_RE = re.compile(r"<(?:td|th)[^>]*>(.*?)</(?:td|th)>", re.IGNORECASE | re.DOTALL)
_LIST_ITEM_RE = re.compile(r"<li[^>]*>(.*?)</li>", re.IGNORECASE | re.DOTALL)
_PARAGRAPH_END_RE = re.compile(r"</p>", re.IGNORECASE)
_BREAK_RE = re.compile(r"<br\s*/?>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]*>")
_BLANK_LINES_RE = re.compile(r"\n{3,}")
_CLASS_LANGUAGE_RE = re.compile(r"""class\s*=\s*["'](?:[^"']*\s)?(?:language-|lang-|source-)?([\w+#-]+)""", re.IGNORECASE)

_SECTION_HEADING_RE = re.compile(r"^(#{2,4})\s+(.+)$")
_FENCE_RE = re.compile(r"^```\s*([\w+#-]+)", re.MULTILINE)
_PHRASE_RE = re.compile(
    r"(?<![\w#+])(Python|TypeScript|JavaScript|Java|Kotlin|Rust|Ruby|PHP|Swift|Lua|Perl|C\+\+|C#)\s+"
    r"(?:API|APIs|implementation|code|example|examples|bindings|library|module|modules|SDK|script|scripts)\b"
)
_DISAMBIGUATION_MARKERS = ("may refer to:", "disambiguation")

LANGUAGE_ALIASES = {
    "py": "python",
    "python3": "python",
    "js": "javascript",
    "ts": "typescript",
    "c++": "cpp",
    "cxx": "cpp",
    "c#": "csharp",
    "cs": "csharp",
    "sh": "shell",
    "bash": "shell",
    "zsh": "shell",
    "objc": "objectivec",
    "objective-c": "objectivec",
    "kt": "kotlin",
    "rb": "ruby",
    "rs": "rust",
    "golang": "go",
}
_KNOWN_LANGUAGES = frozenset(EXTENSION_LANGUAGE_MAP.values())


@dataclass(slots=True)
class WikiSection:
    heading: str | None
    anchor: str | None
    level: int | None
    text: str


def strip_html_to_markdown(content: str) -> str:
    """Render MediaWiki HTML as markdown-like text."""
    text = _TEMPLATE_RE.sub("", content)
    text = _PRE_CODE_RE.sub(lambda m: _fence(m.group(2), m.group(1)), text)
    text = _PRE_RE.sub(lambda m: _fence(_TAG_RE.sub("", m.group(2)), m.group(1)), text)
    text = _INLINE_CODE_RE.sub(lambda m: f"`{_TAG_RE.sub('', m.group(1)).strip()}`", text)
    text = _HEADING_TAG_RE.sub(
        lambda m: f"\n{'#' * int(m.group(1))} {_TAG_RE.sub('', m.group(2)).strip()}\n", text
    )
    text = _TABLE_RE.sub(lambda m: f"\n{_table_to_text(m.group(1))}\n", text)
    text = _LIST_ITEM_RE.sub(lambda m: f"- {_TAG_RE.sub('', m.group(1)).strip()}\n", text)
    text = _PARAGRAPH_END_RE.sub("\n\n", text)
    text = _BREAK_RE.sub("\n", text)
    text = _TAG_RE.sub("", text)
    text = _decode_entities(text)
    text = _BLANK_LINES_RE.sub("\n\n", text)
    return text.strip()


def should_skip_page(clean_text: str) -> bool:
    """Redirects, stubs under 500 characters and disambiguation pages are skipped."""
    if clean_text.lstrip().upper().startswith("#REDIRECT"):
        return True
    if len(clean_text) < MIN_PAGE_CHARS:
        return True
    lowered = clean_text.lower()
    return any(marker in lowered for marker in _DISAMBIGUATION_MARKERS)


def heading_to_anchor(heading: str) -> str:
    anchor = re.sub(r"\s+", "_", heading.strip())
    return re.sub(r"[^\w\-.]", "", anchor)


def split_into_sections(markdown: str) -> list[WikiSection]:
    """Split at ``##``-``####`` headings; text before the first heading is its own section."""
    sections: list[WikiSection] = []
    heading: str | None = None
    anchor: str | None = None
    level: int | None = None
    lines: list[str] = []

    for line in markdown.split("\n"):
        match = _SECTION_HEADING_RE.match(line)
        if not match:
            lines.append(line)
            continue
        body = "\n".join(lines).strip()
        if body or heading is not None:
            sections.append(WikiSection(heading=heading, anchor=anchor, level=level, text=body))
        level = len(match.group(1))
        heading = match.group(2).strip()
        anchor = heading_to_anchor(heading)
        lines = []

    body = "\n".join(lines).strip()
    if body:
        sections.append(WikiSection(heading=heading, anchor=anchor, level=level, text=body))
    return sections


def detect_language_tags(content: str) -> list[str]:
    """Sorted languages named by fenced blocks or phrases like "Python API"."""
    found: set[str] = set()
    for match in _FENCE_RE.finditer(content):
        language = normalize_language(match.group(1))
        if language:
            found.add(language)
    for match in _PHRASE_RE.finditer(content):
        language = normalize_language(match.group(1))
        if language:
            found.add(language)
    return sorted(found) if found else [DEFAULT_LANGUAGE_TAG]


def normalize_language(name: str) -> str | None:
    lowered = name.strip().lower()
    lowered = LANGUAGE_ALIASES.get(lowered, lowered)
    return lowered if lowered in _KNOWN_LANGUAGES else None


def chunk_wiki_page(
    page: WikiPageInput,
    window_size: int = DEFAULT_WINDOW_SIZE,
    overlap_size: int = DEFAULT_OVERLAP_SIZE,
) -> list[Chunk]:
    """Chunk one page; skipped pages produce no chunks.

    Chunk indexes run across the whole page so ``(page_id, chunk_index)`` is
    unique. Every chunk carries the page-level language tags.

    Windows are cut from the section text alone, so ``raw_text`` holds at
    most ``window_size`` tokens while ``chunk_text`` and ``token_count``
    also include the ``"{title} > {heading}: "`` prefix.
    """
    clean_text = strip_html_to_markdown(page.html_content)
    if should_skip_page(clean_text):
        return []

    language_tags = tuple(detect_language_tags(clean_text))
    chunks: list[Chunk] = []
    for section in split_into_sections(clean_text):
        if not section.text:
            continue
        prefix = f"{page.page_title} > {section.heading}" if section.heading else page.page_title
        metadata = {
            "page_id": page.page_id,
            "page_title": page.page_title,
            "namespace": page.namespace,
            "page_url": page.page_url,
            "section_heading": section.heading,
            "section_anchor": section.anchor,
            "section_level": section.level,
            "section_url": f"{page.page_url}#{section.anchor}" if section.anchor else page.page_url,
            "last_modified": page.last_modified,
            "revision_id": page.revision_id,
        }
        for window in sliding_window(section.text, window_size, overlap_size):
            chunk_text = f"{prefix}: {window.text}"
            chunks.append(
                Chunk(
                    ontology_key=f"wiki:{page.page_id}",
                    chunk_index=len(chunks),
                    chunk_text=chunk_text,
                    raw_text=window.text,
                    token_count=count_tokens(chunk_text),
                    section_metadata=dict(metadata),
                    language_tags=language_tags,
                )
            )
    return chunks


# ---------------------------------------------------------------------------


def _fence(code: str, attributes: str = "") -> str:
    language = ""
    match = _CLASS_LANGUAGE_RE.search(attributes or "")
    if match:
        language = normalize_language(match.group(1)) or ""
    return f"\n```{language}\n{_decode_entities(code.strip())}\n```\n"


def _table_to_text(table_html: str) -> str:
    rows: list[str] = []
    for row in _ROW_RE.finditer(table_html):
        cells = [_TAG_RE.sub("", cell.group(1)).strip() for cell in _CELL_RE.finditer(row.group(1))]
        cells = [cell for cell in cells if cell]
        if cells:
            rows.append(" | ".join(cells))
    return "\n".join(rows)


def _decode_entities(text: str) -> str:
    return html.unescape(text).replace("\xa0", " ")


__all__ = [
    "WikiSection",
    "strip_html_to_markdown",
    "should_skip_page",
    "heading_to_anchor",
    "split_into_sections",
    "detect_language_tags",
    "normalize_language",
    "chunk_wiki_page",
]
