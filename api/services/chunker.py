"""Default deterministic text transformer.

Builds a master document from a subject's chapters and cuts it into chunks
of a fixed number of lines.  Chapter splitting recognises headings of the
form ``第12章`` / ``第十二回`` and similar.
"""
from __future__ import annotations

import re
from typing import Any, Dict, List, Optional, Sequence

from ..collaborators import ChapterDraft, ChunkDraft

_CN_DIGITS = {
    "零": 0, "〇": 0, "一": 1, "二": 2, "两": 2, "兩": 2, "三": 3, "四": 4,
    "五": 5, "六": 6, "七": 7, "八": 8, "九": 9,
}
_CN_UNITS = {"十": 10, "百": 100, "千": 1000}

_HEADING = re.compile(
    r"^[ \t　]*第([0-9０-９零〇一二两兩三四五六七八九十百千]+)[章回集話话篇卷][^\n]*$",
    re.MULTILINE,
)


def chinese_to_int(text: str) -> Optional[int]:
    """Convert ``"126"``, ``"１２６"`` or ``"一百二十六"`` to an int."""
    text = text.translate(str.maketrans("０１２３４５６７８９", "0123456789"))
    if text.isdigit():
        return int(text)
    total = 0
    current = 0
    for ch in text:
        if ch in _CN_DIGITS:
            current = _CN_DIGITS[ch]
        elif ch in _CN_UNITS:
            total += (current or 1) * _CN_UNITS[ch]
            current = 0
        else:
            return None
    return total + current


class LineChunker:
    """Line-based chunker used when no external transformer is configured."""

    def split_chapters(self, text: str, title: str) -> List[ChapterDraft]:
        text = text.replace("\r\n", "\n").replace("\r", "\n")
        matches = list(_HEADING.finditer(text))
        if not matches:
            return [ChapterDraft(number=1, title=title, content=text.strip())]

        chapters: List[ChapterDraft] = []
        prelude = text[: matches[0].start()].strip()
        if prelude:
            chapters.append(ChapterDraft(number=0, title=title, content=prelude))
        for i, m in enumerate(matches):
            end = matches[i + 1].start() if i + 1 < len(matches) else len(text)
            body = text[m.end():end].strip()
            chapters.append(ChapterDraft(
                number=chinese_to_int(m.group(1)),
                title=m.group(0).strip(),
                content=body,
            ))
        return chapters

    def build_chunks(
        self,
        items: Sequence[ChapterDraft],
        title: str,
        chunk_size: int,
        metadata: Dict[str, Any],
    ) -> List[ChunkDraft]:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")

        lines: List[str] = [f"# {title}"]
        if metadata.get("author"):
            lines.append(f"作者: {metadata['author']}")
        if metadata.get("description"):
            lines.extend(["", metadata["description"]])
        for item in items:
            lines.extend(["", f"## {item.title}".rstrip(), ""])
            lines.extend(item.content.split("\n"))

        groups = [lines[i:i + chunk_size] for i in range(0, len(lines), chunk_size)]
        total = len(groups)
        return [
            ChunkDraft(
                position=n,
                title=f"{title} ({n + 1}/{total})",
                content="\n".join(group).strip("\n") + "\n",
            )
            for n, group in enumerate(groups)
        ]
