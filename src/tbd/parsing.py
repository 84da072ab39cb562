"""YAML frontmatter parsing shared by issue files.

Issue files are ``---``-delimited YAML frontmatter followed by a markdown
body. The frontmatter is real YAML (nested lists of dependency edges), so it
goes through PyYAML rather than a line parser.
"""

from __future__ import annotations

from typing import Any

import yaml

FrontmatterDict = dict[str, Any]


def split_frontmatter(content: str) -> tuple[str, str]:
    """Split *content* into ``(frontmatter_text, body)``.

    Raises:
        ValueError: If the content does not start with ``---`` or lacks
            a closing ``---``.
    """
    if not content.startswith("---"):
        raise ValueError("Content must start with YAML frontmatter (---)")

    lines = content.split("\n")
    for i in range(1, len(lines)):
        if lines[i].rstrip() == "---":
            return "\n".join(lines[1:i]), "\n".join(lines[i + 1 :]).strip()
    raise ValueError("Invalid frontmatter: missing closing ---")


def parse_frontmatter(content: str) -> tuple[FrontmatterDict, str]:
    """Parse frontmatter and body. Raises ValueError on malformed YAML."""
    frontmatter, body = split_frontmatter(content)
    try:
        data = yaml.safe_load(frontmatter)
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid frontmatter YAML: {exc}") from exc
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError("Frontmatter must be a mapping")
    return data, body


def serialize_frontmatter(data: FrontmatterDict, body: str) -> str:
    frontmatter = yaml.safe_dump(data, sort_keys=False, default_flow_style=False, allow_unicode=True)
    parts = ["---", frontmatter.rstrip("\n"), "---"]
    if body:
        parts.append(body.rstrip("\n"))
    return "\n".join(parts) + "\n"
