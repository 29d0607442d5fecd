"""File language classification and the language-affinity boost."""

from __future__ import annotations

from collections import Counter
from typing import Iterable, Mapping, Sequence

# Canonical names are lowercase and punctuation-free so they compare equal to
# stored snippet languages and wiki language tags.
EXTENSION_LANGUAGE_MAP: Mapping[str, str] = {
    "ts": "typescript",
    "tsx": "typescript",
    "mts": "typescript",
    "cts": "typescript",
    "js": "javascript",
    "jsx": "javascript",
    "mjs": "javascript",
    "cjs": "javascript",
    "py": "python",
    "pyw": "python",
    "go": "go",
    "rs": "rust",
    "java": "java",
    "kt": "kotlin",
    "kts": "kotlin",
    "swift": "swift",
    "cs": "csharp",
    "cpp": "cpp",
    "cc": "cpp",
    "cxx": "cpp",
    "hpp": "cpp",
    "hxx": "cpp",
    "c": "c",
    "h": "c",
    "rb": "ruby",
    "php": "php",
    "scala": "scala",
    "sh": "shell",
    "bash": "shell",
    "zsh": "shell",
    "sql": "sql",
    "dart": "dart",
    "lua": "lua",
    "ex": "elixir",
    "exs": "elixir",
    "zig": "zig",
    "r": "r",
    "m": "objectivec",
    "mm": "objectivecpp",
    "pl": "perl",
    "pm": "perl",
    "clj": "clojure",
    "cljs": "clojure",
    "cljc": "clojure",
    "erl": "erlang",
    "hrl": "erlang",
    "hs": "haskell",
    "ml": "ocaml",
    "mli": "ocaml",
    "fs": "fsharp",
    "fsx": "fsharp",
    "fsi": "fsharp",
    "jl": "julia",
    "groovy": "groovy",
    "gvy": "groovy",
    "v": "verilog",
    "sv": "verilog",
    "vhd": "vhdl",
    "vhdl": "vhdl",
    "cmake": "cmake",
}

RELATED_LANGUAGES: Mapping[str, tuple[str, ...]] = {
    "c": ("cpp",),
    "cpp": ("c",),
    "typescript": ("javascript",),
    "javascript": ("typescript",),
    "objectivec": ("c", "cpp"),
    "objectivecpp": ("c", "cpp", "objectivec"),
    "kotlin": ("java",),
}

CPP_EXTENSIONS = frozenset({"cpp", "cc", "cxx", "hpp", "hxx"})

UNKNOWN_LANGUAGE = "unknown"
EXACT_MATCH_FACTOR = 0.5
RELATED_MATCH_FACTOR = 0.25


def _extension(file_path: str) -> str | None:
    name = file_path.rsplit("/", 1)[-1]
    if "." not in name:
        return None
    return name.rsplit(".", 1)[-1]


def classify_file_language(file_path: str, context_files: Sequence[str] | None = None) -> str:
    """Return the lowercase language for ``file_path`` or ``"unknown"``.

    ``.h`` headers resolve to ``cpp`` when any context file is C++, else ``c``.
    """
    ext = _extension(file_path)
    if not ext:
        return UNKNOWN_LANGUAGE
    if ext.lower() == "h":
        if context_files and any((_extension(path) or "").lower() in CPP_EXTENSIONS for path in context_files):
            return "cpp"
        return "c"
    return EXTENSION_LANGUAGE_MAP.get(ext.lower(), UNKNOWN_LANGUAGE)


def classify_languages(files: Iterable[str]) -> dict[str, list[str]]:
    """Group files by language, skipping unknown extensions."""
    files = list(files)
    grouped: dict[str, list[str]] = {}
    for path in files:
        language = classify_file_language(path, files)
        if language == UNKNOWN_LANGUAGE:
            continue
        grouped.setdefault(language, []).append(path)
    return grouped


def language_shares(languages: Iterable[str]) -> dict[str, float]:
    """Fraction of the task each language represents; repetition means weight."""
    counts = Counter(language.lower() for language in languages if language and language != UNKNOWN_LANGUAGE)
    total = sum(counts.values())
    if total == 0:
        return {}
    return {language: count / total for language, count in counts.items()}


def language_boost(
    item_languages: Iterable[str],
    shares: Mapping[str, float],
    base_score: float,
) -> float:
    """Additive, non-negative boost for an item given the task's language shares.

    An exact match earns ``base * 0.5 * share``; a related-language match earns
    ``base * 0.25 * share``. The best single match wins. Items without language
    metadata, or whose languages are absent from ``shares``, get ``0.0``.
    """
    if not shares or base_score <= 0:
        return 0.0
    best = 0.0
    for language in item_languages:
        if not language:
            continue
        language = language.lower()
        share = shares.get(language)
        if share is not None:
            best = max(best, base_score * EXACT_MATCH_FACTOR * share)
            continue
        for related in RELATED_LANGUAGES.get(language, ()):
            related_share = shares.get(related)
            if related_share is not None:
                best = max(best, base_score * RELATED_MATCH_FACTOR * related_share)
    return best


__all__ = [
    "EXTENSION_LANGUAGE_MAP",
    "RELATED_LANGUAGES",
    "UNKNOWN_LANGUAGE",
    "classify_file_language",
    "classify_languages",
    "language_shares",
    "language_boost",
]
