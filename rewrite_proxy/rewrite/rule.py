"""
The rewrite rule: one compiled pattern plus one replacement template.

Templates use dollar references rather than Python's backslash syntax:

- ``$1`` / ``${1}``: numbered capture group
- ``$name`` / ``${name}``: named capture group (``(?P<name>...)``)
- ``$$``: a literal dollar sign

``$name`` consumes the longest run of letters, digits and underscores, so
``$1x`` refers to a group called ``1x`` (which expands to nothing); write
``${1}x`` instead. References to missing or non-participating groups expand
to the empty string.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Optional, Tuple, Union

from .errors import CompileError

logger = logging.getLogger("uvicorn.error")

DEFAULT_RULE_NAME = "full-url-rewrite"

# Group numbers above this are treated as names and never resolve.
_MAX_GROUP_NUMBER = 100_000_000

# A template compiles down to literal strings and group references.
TemplatePart = Union[str, int, "_GroupName"]


@dataclass(frozen=True)
class _GroupName:
    name: str


def _extract_reference(template: str, start: int) -> Optional[Tuple[str, int]]:
    """
    Read a group reference that starts right after a ``$``.

    Returns the reference name and the index following it, or None when the
    text after the ``$`` is not a valid reference.
    """
    i = start
    brace = i < len(template) and template[i] == "{"
    if brace:
        i += 1
    name_start = i
    while i < len(template) and (template[i].isalnum() or template[i] == "_"):
        i += 1
    if i == name_start:
        return None
    name = template[name_start:i]
    if brace:
        if i >= len(template) or template[i] != "}":
            return None
        i += 1
    return name, i


def _group_number(name: str) -> Optional[int]:
    if not name.isascii() or not name.isdigit():
        return None
    if len(name) > 1 and name[0] == "0":
        return None
    number = int(name)
    if number >= _MAX_GROUP_NUMBER:
        return None
    return number


def parse_template(template: str) -> Tuple[TemplatePart, ...]:
    """Split a replacement template into literal text and group references."""
    parts = []
    literal = []
    i = 0
    while True:
        dollar = template.find("$", i)
        if dollar < 0:
            literal.append(template[i:])
            break
        literal.append(template[i:dollar])
        i = dollar + 1
        if i < len(template) and template[i] == "$":
            literal.append("$")
            i += 1
            continue
        reference = _extract_reference(template, i)
        if reference is None:
            # Not a reference, keep the dollar sign as text
            literal.append("$")
            continue
        name, i = reference
        text = "".join(literal)
        if text:
            parts.append(text)
        literal = []
        number = _group_number(name)
        parts.append(number if number is not None else _GroupName(name))
    text = "".join(literal)
    if text:
        parts.append(text)
    return tuple(parts)


@dataclass(frozen=True)
class RewriteRule:
    """
    A compiled pattern and its replacement template.

    Instances are immutable and hold no per-request state, so a single rule
    is shared by every request the middleware handles.
    """

    pattern: re.Pattern
    replacement: str
    name: str = DEFAULT_RULE_NAME
    _template: Tuple[TemplatePart, ...] = field(
        init=False, repr=False, compare=False
    )

    def __post_init__(self):
        object.__setattr__(self, "_template", parse_template(self.replacement))

    def expand(self, match: re.Match) -> str:
        """Expand the replacement template for one match."""
        out = []
        for part in self._template:
            if isinstance(part, str):
                out.append(part)
                continue
            if isinstance(part, int):
                if part > self.pattern.groups:
                    continue
                group = match.group(part)
            else:
                index = self.pattern.groupindex.get(part.name)
                if index is None:
                    continue
                group = match.group(index)
            if group:
                out.append(group)
        return "".join(out)

    def substitute(self, url: str) -> str:
        """
        Replace every non-overlapping match of the pattern in ``url``.

        An empty match that directly follows the previous match is not
        replaced, so a pattern that can match both empty and non-empty text
        only substitutes once per position. Returns ``url`` itself when the
        pattern does not match.
        """
        pieces = []
        last_end = 0
        pos = 0
        matched = False
        while pos <= len(url):
            match = self.pattern.search(url, pos)
            if match is None:
                break
            matched = True
            start, end = match.span()
            pieces.append(url[last_end:start])
            if end > last_end or start == 0:
                pieces.append(self.expand(match))
            last_end = end
            pos = pos + 1 if pos + 1 > end else end
        if not matched:
            return url
        pieces.append(url[last_end:])
        return "".join(pieces)


def compile_rule(
    regex: str, replacement: str, name: str = DEFAULT_RULE_NAME
) -> RewriteRule:
    """
    Compile ``regex`` and pair it with ``replacement``.

    The pattern is compiled in ASCII mode so ``\\w``, ``\\d``, ``\\s`` and
    ``\\b`` only match ASCII characters. Raises CompileError if the pattern is
    invalid; the template is accepted as-is.
    """
    try:
        pattern = re.compile(regex, re.ASCII)
    except re.error as e:
        raise CompileError(name, regex, e) from e
    logger.info(f"[{name}] Compiled rewrite rule {regex!r} -> {replacement!r}")
    return RewriteRule(pattern=pattern, replacement=replacement, name=name)
