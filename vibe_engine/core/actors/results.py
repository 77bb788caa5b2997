"""Actor-specific result payloads built from generated text.

Every payload carries ``content`` (the raw text), ``summary`` and the
provider metadata.  Roles add structured fields:

  - researcher: ``key_findings``, ``sections``
  - analyst: ``insights``
  - coder: ``code_blocks``, plus ``code`` / ``language`` of the first block
  - composer, writer: ``sections``
"""

from __future__ import annotations

import re
from typing import Any

from vibe_engine.core.llm.models import GenerationResult
from vibe_engine.core.task.models import ActorType

_CODE_BLOCK_RE = re.compile(r"```([\w+#.-]*)[ \t]*\n(.*?)```", re.DOTALL)
_HEADING_RE = re.compile(r"^(#{1,6})\s+(.+?)\s*#*\s*$", re.MULTILINE)
_BULLET_RE = re.compile(r"^\s*(?:[-*+]|\d+[.)])\s+(.+?)\s*$", re.MULTILINE)

SUMMARY_MAX_CHARS = 280


def extract_result(actor_type: ActorType, generation: GenerationResult) -> dict[str, Any]:
    """Build the task result for *actor_type* from *generation*."""
    text = generation.text.strip()
    result: dict[str, Any] = {
        "content": text,
        "summary": summarize(text),
        "provider": generation.provider,
        "model": generation.model,
        "duration_ms": round(generation.duration_ms, 1),
    }

    if actor_type == ActorType.CODER:
        blocks = extract_code_blocks(text)
        result["code_blocks"] = blocks
        if blocks:
            result["code"] = blocks[0]["code"]
            result["language"] = blocks[0]["language"]
    elif actor_type == ActorType.RESEARCHER:
        result["key_findings"] = extract_bullets(text)
        result["sections"] = extract_sections(text)
    elif actor_type == ActorType.ANALYST:
        result["insights"] = extract_bullets(text)
    elif actor_type in (ActorType.WRITER, ActorType.COMPOSER):
        result["sections"] = extract_sections(text)

    return result


def summarize(text: str) -> str:
    """First prose paragraph of *text*, shortened to ``SUMMARY_MAX_CHARS``."""
    without_code = _CODE_BLOCK_RE.sub("", text)
    for paragraph in re.split(r"\n\s*\n", without_code):
        paragraph = paragraph.strip()
        if not paragraph or paragraph.startswith("#"):
            continue
        flat = " ".join(paragraph.split())
        if len(flat) > SUMMARY_MAX_CHARS:
            return flat[: SUMMARY_MAX_CHARS - 3].rstrip() + "..."
        return flat
    return ""


def extract_code_blocks(text: str) -> list[dict[str, str]]:
    return [
        {"language": (lang or "text").lower(), "code": code.rstrip("\n")}
        for lang, code in _CODE_BLOCK_RE.findall(text)
    ]


def extract_bullets(text: str) -> list[str]:
    return _BULLET_RE.findall(_CODE_BLOCK_RE.sub("", text))


def extract_sections(text: str) -> list[dict[str, Any]]:
    """Split markdown into ``{"heading", "level", "body"}`` sections."""
    matches = list(_HEADING_RE.finditer(text))
    sections: list[dict[str, Any]] = []
    for index, match in enumerate(matches):
        end = matches[index + 1].start() if index + 1 < len(matches) else len(text)
        sections.append(
            {
                "heading": match.group(2),
                "level": len(match.group(1)),
                "body": text[match.end() : end].strip(),
            }
        )
    return sections
