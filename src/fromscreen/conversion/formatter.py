"""Deterministic pretty-printer for generated markup.

Rules:
- indent with `indent_width` spaces, never tabs;
- an element stays on one line when it fits in `print_width` and has no
  block-level child elements, otherwise each child gets its own line(s);
- an opening tag that does not fit breaks one attribute per line;
- text is whitespace-collapsed and word-filled to the width;
- `pre`, `textarea`, `script` and `style` contents are kept verbatim.

Input that is not balanced markup raises `FormatError`; nothing is guessed.
"""

from __future__ import annotations

import html
import re
from html.parser import HTMLParser

from bs4 import BeautifulSoup, Comment, Doctype, NavigableString, Tag
from bs4.element import PreformattedString

VOID_ELEMENTS = frozenset(
    {
        "area",
        "base",
        "br",
        "col",
        "embed",
        "hr",
        "img",
        "input",
        "link",
        "meta",
        "param",
        "source",
        "track",
        "wbr",
    }
)

# Elements whose end tag HTML allows to be omitted.
OPTIONAL_END_TAGS = frozenset(
    {
        "body",
        "caption",
        "colgroup",
        "dd",
        "dt",
        "head",
        "html",
        "li",
        "optgroup",
        "option",
        "p",
        "rb",
        "rp",
        "rt",
        "rtc",
        "tbody",
        "td",
        "tfoot",
        "th",
        "thead",
        "tr",
    }
)

RAW_TEXT_ELEMENTS = frozenset({"pre", "script", "style", "textarea"})

BLOCK_ELEMENTS = frozenset(
    {
        "address",
        "article",
        "aside",
        "blockquote",
        "body",
        "details",
        "dialog",
        "dd",
        "div",
        "dl",
        "dt",
        "fieldset",
        "figcaption",
        "figure",
        "footer",
        "form",
        "h1",
        "h2",
        "h3",
        "h4",
        "h5",
        "h6",
        "head",
        "header",
        "hgroup",
        "hr",
        "html",
        "li",
        "main",
        "nav",
        "ol",
        "p",
        "pre",
        "section",
        "summary",
        "table",
        "tbody",
        "td",
        "tfoot",
        "th",
        "thead",
        "tr",
        "ul",
    }
)

BOOLEAN_ATTRIBUTES = frozenset(
    {
        "allowfullscreen",
        "async",
        "autofocus",
        "checked",
        "controls",
        "default",
        "defer",
        "disabled",
        "hidden",
        "inert",
        "loop",
        "multiple",
        "muted",
        "novalidate",
        "open",
        "readonly",
        "required",
        "reversed",
        "selected",
    }
)

_CODE_FENCE_RE = re.compile(r"^\s*```[\w-]*[^\n]*\n(?P<body>.*?)\n?```\s*$", re.DOTALL)
_DOCTYPE_PREFIX_RE = re.compile(r"^doctype\s+", re.IGNORECASE)
_WHITESPACE_RE = re.compile(r"\s+")


class FormatError(ValueError):
    """Generated text is not well-formed enough to format."""


def canonicalize(raw_text: str, *, print_width: int = 120, indent_width: int = 2) -> str:
    text = strip_code_fences(raw_text).strip()
    if not text:
        raise FormatError("generated output is empty")
    if "<" not in text or ">" not in text:
        raise FormatError("generated output contains no markup")
    check_well_formed(text)

    soup = BeautifulSoup(text, "html.parser", multi_valued_attributes=None)
    printer = _MarkupPrinter(print_width=print_width, indent_width=indent_width)
    lines = printer.render_children(soup, depth=0)
    if not lines:
        raise FormatError("generated output contains no markup")
    return "\n".join(lines) + "\n"


def strip_code_fences(text: str) -> str:
    """Remove one markdown code fence wrapping the whole text, if present."""
    match = _CODE_FENCE_RE.match(text)
    if match is None:
        return text
    return match.group("body")


def check_well_formed(text: str) -> None:
    checker = _TagBalanceChecker()
    checker.feed(text)
    checker.finish()


class _TagBalanceChecker(HTMLParser):
    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self._open: list[tuple[str, int]] = []

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        if tag in VOID_ELEMENTS:
            return
        self._open.append((tag, self.getpos()[0]))

    def handle_startendtag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        return None

    def handle_endtag(self, tag: str) -> None:
        if tag in VOID_ELEMENTS:
            return
        for index in range(len(self._open) - 1, -1, -1):
            if self._open[index][0] == tag:
                break
        else:
            line, column = self.getpos()
            raise FormatError(f"unexpected closing tag </{tag}> at line {line}, column {column + 1}")
        self._raise_for_unclosed(self._open[index + 1 :])
        del self._open[index:]

    def finish(self) -> None:
        self.close()
        self._raise_for_unclosed(self._open)

    @staticmethod
    def _raise_for_unclosed(entries: list[tuple[str, int]]) -> None:
        for name, line in entries:
            if name not in OPTIONAL_END_TAGS:
                raise FormatError(f"unclosed <{name}> opened at line {line}")


class _MarkupPrinter:
    def __init__(self, *, print_width: int, indent_width: int) -> None:
        self.print_width = print_width
        self.indent_unit = " " * indent_width

    def render_children(self, parent: Tag, depth: int) -> list[str]:
        lines: list[str] = []
        for child in parent.children:
            lines.extend(self.render_node(child, depth))
        return lines

    def render_node(self, node: object, depth: int) -> list[str]:
        indent = self.indent_unit * depth
        if isinstance(node, Doctype):
            return [indent + _doctype(node)]
        if isinstance(node, Comment):
            return [indent + _comment(node)]
        if isinstance(node, PreformattedString):
            return [indent + node.output_ready().strip()]
        if isinstance(node, NavigableString):
            return self._fill_text(str(node), indent)
        if isinstance(node, Tag):
            return self._render_tag(node, depth)
        return []

    def _render_tag(self, tag: Tag, depth: int) -> list[str]:
        indent = self.indent_unit * depth
        if tag.name in VOID_ELEMENTS:
            return self._open_tag_lines(tag, indent, closing=" />")
        if tag.name in RAW_TEXT_ELEMENTS:
            verbatim = f"{_open_tag(tag)}{tag.decode_contents()}</{tag.name}>"
            first, *rest = verbatim.split("\n")
            return [indent + first, *rest]

        if not _has_block_child(tag):
            flat = _flat(tag)
            if flat is not None and self._fits(indent + flat):
                return [indent + flat]

        head = self._open_tag_lines(tag, indent, closing=">")
        children = self.render_children(tag, depth + 1)
        close_tag = f"</{tag.name}>"
        if not children:
            head[-1] += close_tag
            return head
        return [*head, *children, indent + close_tag]

    def _open_tag_lines(self, tag: Tag, indent: str, *, closing: str) -> list[str]:
        single = indent + _open_tag(tag, closing=closing)
        if self._fits(single) or not tag.attrs:
            return [single]
        attr_indent = indent + self.indent_unit
        return [
            f"{indent}<{tag.name}",
            *(attr_indent + attr for attr in _attributes(tag)),
            indent + closing.strip(),
        ]

    def _fill_text(self, text: str, indent: str) -> list[str]:
        lines: list[str] = []
        current = ""
        for word in text.split():
            word = html.escape(word, quote=False)
            if not current:
                current = word
            elif self._fits(f"{indent}{current} {word}"):
                current = f"{current} {word}"
            else:
                lines.append(indent + current)
                current = word
        if current:
            lines.append(indent + current)
        return lines

    def _fits(self, line: str) -> bool:
        return len(line) <= self.print_width


def _has_block_child(tag: Tag) -> bool:
    return any(isinstance(child, Tag) and child.name in BLOCK_ELEMENTS for child in tag.children)


def _flat(node: object) -> str | None:
    """Single-line rendering, or None when the node cannot be put on one line."""
    if isinstance(node, Doctype):
        return None
    if isinstance(node, Comment):
        return _comment(node)
    if isinstance(node, PreformattedString):
        return node.output_ready().strip()
    if isinstance(node, NavigableString):
        return html.escape(_WHITESPACE_RE.sub(" ", str(node)), quote=False)
    if not isinstance(node, Tag):
        return ""
    if node.name in VOID_ELEMENTS:
        return _open_tag(node, closing=" />")
    if node.name in RAW_TEXT_ELEMENTS:
        contents = node.decode_contents()
        if "\n" in contents:
            return None
        return f"{_open_tag(node)}{contents}</{node.name}>"

    parts: list[str] = []
    for child in node.children:
        rendered = _flat(child)
        if rendered is None:
            return None
        parts.append(rendered)
    return f"{_open_tag(node)}{''.join(parts).strip(' ')}</{node.name}>"


def _open_tag(tag: Tag, *, closing: str = ">") -> str:
    attributes = _attributes(tag)
    if not attributes:
        return f"<{tag.name}{closing}"
    return f"<{tag.name} {' '.join(attributes)}{closing}"


def _attributes(tag: Tag) -> list[str]:
    rendered: list[str] = []
    for name, value in tag.attrs.items():
        if isinstance(value, list):
            value = " ".join(value)
        value = "" if value is None else str(value)
        if value == "" and name in BOOLEAN_ATTRIBUTES:
            rendered.append(name)
            continue
        escaped = value.replace("&", "&amp;").replace('"', "&quot;")
        rendered.append(f'{name}="{escaped}"')
    return rendered


def _doctype(node: Doctype) -> str:
    value = _DOCTYPE_PREFIX_RE.sub("", " ".join(str(node).split()))
    if value.lower() == "html":
        value = "html"
    return f"<!doctype {value}>"


def _comment(node: Comment) -> str:
    return f"<!-- {' '.join(str(node).split())} -->"
