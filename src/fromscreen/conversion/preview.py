"""Standalone HTML documents for previewing generated markup in a browser."""

from __future__ import annotations

import re

from bs4 import BeautifulSoup, Tag

# Elements removed together with their content.
STRIPPED_ELEMENTS = ("script", "iframe", "object", "embed")

_SCRIPT_URL_SCHEMES = ("javascript:", "vbscript:")
_URL_NOISE_RE = re.compile(r"[\x00-\x20]+")

_STORED_BODY_STYLE = """      margin: 0;
      padding: 0;"""

_ADHOC_BODY_STYLE = """      margin: 0;
      padding: 20px;
      min-height: 100vh;
      background: white;"""

_DOCUMENT_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>Preview</title>
  <script src="https://cdn.tailwindcss.com"></script>
  <style>
    body {{
{body_style}
    }}
    * {{
      box-sizing: border-box;
    }}
  </style>
</head>
<body>
  {markup}
</body>
</html>
"""


def sanitize_markup(markup: str) -> str:
    """Drop executable content: script-like elements, `on*` handlers and script URLs."""
    soup = BeautifulSoup(markup, "html.parser", multi_valued_attributes=None)
    for element in soup.find_all(list(STRIPPED_ELEMENTS)):
        element.decompose()
    for tag in soup.find_all(True):
        _strip_unsafe_attributes(tag)
    return soup.decode()


def render_preview_document(markup: str, *, adhoc: bool = False) -> str:
    """Wrap sanitized markup in a Tailwind-enabled page.

    Stored conversions render edge to edge; ad hoc snippets get padding and a
    white page background.
    """
    return _DOCUMENT_TEMPLATE.format(
        body_style=_ADHOC_BODY_STYLE if adhoc else _STORED_BODY_STYLE,
        markup=sanitize_markup(markup).strip(),
    )


def _strip_unsafe_attributes(tag: Tag) -> None:
    for name in list(tag.attrs):
        value = tag.attrs[name]
        if name.lower().startswith("on") or name.lower() == "srcdoc":
            del tag.attrs[name]
        elif isinstance(value, str) and _is_script_url(value):
            del tag.attrs[name]


def _is_script_url(value: str) -> bool:
    return _URL_NOISE_RE.sub("", value).lower().startswith(_SCRIPT_URL_SCHEMES)
