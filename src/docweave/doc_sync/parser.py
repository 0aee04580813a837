"""Document parser: YAML frontmatter, Markdown body, title and structure."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

import yaml

_MARKER = "---"

# Regex for ATX headings (``# Title`` .. ``###### Title``).
_HEADING_RE = re.compile(r"^(#{1,6})\s+(.+?)\s*#*\s*$")

# Inline Markdown links: [text](target).
_LINK_RE = re.compile(r"\[([^\]]*)\]\(([^)]+)\)")

_FENCE_RE = re.compile(r"```(\w*)\r?\n([\s\S]*?)```")


@dataclass
class FrontmatterResult:
    """Outcome of splitting frontmatter from a Markdown document."""

    has_frontmatter: bool
    frontmatter: dict[str, Any] | None
    body: str
    errors: list[str] = field(default_factory=list)

    @property
    def is_success(self) -> bool:
        return not self.errors


@dataclass(frozen=True)
class HeaderInfo:
    level: int
    text: str
    line: int


@dataclass(frozen=True)
class LinkInfo:
    text: str
    url: str
    line: int


@dataclass(frozen=True)
class CodeBlockInfo:
    index: int
    language: str | None
    code: str
    start_line: int
    end_line: int


@dataclass
class ParsedDocument:
    """A parsed document. Malformed frontmatter never makes parsing fail."""

    raw_content: str
    body: str
    frontmatter: dict[str, Any] | None = None
    title: str = ""
    headers: list[HeaderInfo] = field(default_factory=list)
    links: list[LinkInfo] = field(default_factory=list)
    code_blocks: list[CodeBlockInfo] = field(default_factory=list)
    error: str | None = None
    is_success: bool = True

    @property
    def has_frontmatter(self) -> bool:
        return self.frontmatter is not None


def _normalize_value(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k): _normalize_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalize_value(v) for v in value]
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


def parse_frontmatter(text: str) -> FrontmatterResult:
    """Split YAML frontmatter from *text*.

    Frontmatter must start at the very first character with ``---`` and be
    closed by a later line starting with ``---``. If the YAML is invalid the
    full text is returned as the body along with the captured error.
    """
    if not text or not text.startswith(_MARKER):
        return FrontmatterResult(has_frontmatter=False, frontmatter=None, body=text or "")

    end = text.find(f"\n{_MARKER}", len(_MARKER))
    if end == -1:
        return FrontmatterResult(has_frontmatter=False, frontmatter=None, body=text)

    yaml_text = text[len(_MARKER) + 1 : end] if end > len(_MARKER) else ""
    body_start = end + len(_MARKER) + 1
    # The closing marker line may carry trailing whitespace.
    while body_start < len(text) and text[body_start] in " \t":
        body_start += 1
    while body_start < len(text) and text[body_start] in "\r\n":
        body_start += 1
    body = text[body_start:]

    try:
        data = yaml.safe_load(yaml_text)
    except yaml.YAMLError as exc:
        return FrontmatterResult(
            has_frontmatter=False,
            frontmatter=None,
            body=text,
            errors=[f"Invalid frontmatter: {exc}"],
        )

    if not isinstance(data, dict):
        return FrontmatterResult(has_frontmatter=False, frontmatter=None, body=text)

    return FrontmatterResult(has_frontmatter=True, frontmatter=_normalize_value(data), body=body)


def get_frontmatter_value(frontmatter: dict[str, Any] | None, key: str) -> Any:
    """Case-insensitive frontmatter lookup. Returns None when absent."""
    if not frontmatter:
        return None
    if key in frontmatter:
        return frontmatter[key]
    lowered = key.lower()
    for k, v in frontmatter.items():
        if k.lower() == lowered:
            return v
    return None


def get_string_list(frontmatter: dict[str, Any] | None, key: str) -> list[str]:
    """Read *key* as a list of non-blank strings (a single string is a one-item list)."""
    value = get_frontmatter_value(frontmatter, key)
    if isinstance(value, str):
        return [value] if value.strip() else []
    if isinstance(value, list):
        return [str(item) for item in value if item is not None and str(item).strip()]
    return []


def extract_headers(body: str) -> list[HeaderInfo]:
    headers: list[HeaderInfo] = []
    in_fence = False
    for lineno, line in enumerate(body.splitlines(), start=1):
        if line.lstrip().startswith("```"):
            in_fence = not in_fence
            continue
        if in_fence:
            continue
        m = _HEADING_RE.match(line)
        if m:
            headers.append(HeaderInfo(level=len(m.group(1)), text=m.group(2).strip(), line=lineno))
    return headers


def extract_links(body: str) -> list[LinkInfo]:
    links: list[LinkInfo] = []
    for lineno, line in enumerate(body.splitlines(), start=1):
        for m in _LINK_RE.finditer(line):
            links.append(LinkInfo(text=m.group(1), url=m.group(2), line=lineno))
    return links


def extract_code_blocks(body: str) -> list[CodeBlockInfo]:
    blocks: list[CodeBlockInfo] = []
    for idx, m in enumerate(_FENCE_RE.finditer(body)):
        code = m.group(2)
        start_line = body.count("\n", 0, m.start())
        blocks.append(
            CodeBlockInfo(
                index=idx,
                language=m.group(1) or None,
                code=code.rstrip(),
                start_line=start_line,
                end_line=start_line + code.count("\n"),
            )
        )
    return blocks


def extract_title(frontmatter: dict[str, Any] | None, headers: list[HeaderInfo]) -> str:
    """Title from frontmatter ``title``, else first H1, else empty."""
    title = get_frontmatter_value(frontmatter, "title")
    if isinstance(title, str) and title.strip():
        return title.strip()
    for header in headers:
        if header.level == 1:
            return header.text
    return ""


def parse_document(text: str) -> ParsedDocument:
    """Parse *text* into frontmatter, body, title and structural elements."""
    if not text:
        return ParsedDocument(raw_content="", body="")

    fm = parse_frontmatter(text)
    headers = extract_headers(fm.body)
    return ParsedDocument(
        raw_content=text,
        body=fm.body,
        frontmatter=fm.frontmatter,
        title=extract_title(fm.frontmatter, headers),
        headers=headers,
        links=extract_links(fm.body),
        code_blocks=extract_code_blocks(fm.body),
        error=fm.errors[0] if fm.errors else None,
    )
