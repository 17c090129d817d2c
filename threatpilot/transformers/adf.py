"""
Plain text → Atlassian Document Format.

Jira Cloud's v3 API only accepts rich-text fields as an ADF tree::

    {"type": "doc", "version": 1, "content": [<paragraph>, ...]}

Each non-blank input line becomes one paragraph holding a single text node.
ADF text nodes may not be empty, so a blank description yields one
paragraph with no content.
"""

from __future__ import annotations

from typing import Any, Dict, List


def _paragraph(text: str) -> Dict[str, Any]:
    content: List[Dict[str, Any]] = []
    if text:
        content.append({"type": "text", "text": text})
    return {"type": "paragraph", "content": content}


def to_adf(text: Any) -> Dict[str, Any]:
    """Build an ADF document from *text* (coerced with ``str``)."""
    lines = [line.rstrip() for line in str(text if text is not None else "").splitlines()]
    paragraphs = [_paragraph(line) for line in lines if line.strip()]
    if not paragraphs:
        paragraphs = [_paragraph("")]
    return {"type": "doc", "version": 1, "content": paragraphs}
