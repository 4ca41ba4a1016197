# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Lightweight HTML to plain text conversion for notification previews.

Notices are delivered to chat channels that render plain text, so markup is
dropped rather than translated:

- Paragraphs, headings, divs and list items → line breaks
- ``<br>`` → newline
- Links → ``text (url)`` when the text differs from the URL
- ``<script>``, ``<style>`` and ``<head>`` content → removed
- Quoted reply containers (Gmail, Outlook, Yahoo, Thunderbird/Apple Mail)
  → removed, since the preview should show what the sender wrote
- HTML entities → decoded characters
"""

import re
from html.parser import HTMLParser


_QUOTE_IDS = frozenset(
    {
        "mail-editor-reference-message-container",
        "divrplyfwdmsg",
    }
)

_QUOTE_CLASSES = frozenset(
    {
        "gmail_quote",
        "yahoo_quoted",
        "moz-cite-prefix",
    }
)

_BLOCK_TAGS = frozenset(
    {
        "p",
        "div",
        "section",
        "article",
        "blockquote",
        "table",
        "tr",
        "ul",
        "ol",
        "li",
        "h1",
        "h2",
        "h3",
        "h4",
        "h5",
        "h6",
        "hr",
    }
)

_SKIP_TAGS = frozenset({"script", "style", "head", "title"})

_VOID_TAGS = frozenset(
    {"br", "hr", "img", "meta", "link", "input", "col", "area", "wbr"}
)


def html_to_text(html_content: str) -> str:
    """Convert an HTML body to plain text.

    Args:
        html_content: HTML string to convert.

    Returns:
        Plain text with at most one blank line between blocks.
    """
    if not html_content:
        return ""

    parser = _HTMLToTextParser()
    parser.feed(html_content)
    parser.close()
    return parser.get_text()


def _is_quote_element(tag: str, attrs: dict[str, str | None]) -> bool:
    """Check if a tag/attrs combination is a known quote container."""
    element_id = attrs.get("id")
    if element_id and element_id.lower() in _QUOTE_IDS:
        return True

    class_attr = attrs.get("class")
    if class_attr and set(class_attr.lower().split()) & _QUOTE_CLASSES:
        return True

    if tag == "blockquote":
        type_attr = attrs.get("type")
        if type_attr and type_attr.lower() == "cite":
            return True

    return False


class _HTMLToTextParser(HTMLParser):
    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self._output: list[str] = []
        self._skip_depth = 0
        # Tag name and same-tag nesting depth of the quote being dropped
        self._quote_tag: str | None = None
        self._quote_nesting = 0
        self._link_href: str | None = None
        self._link_text: list[str] = []

    def handle_starttag(
        self, tag: str, attrs: list[tuple[str, str | None]]
    ) -> None:
        tag = tag.lower()

        if self._quote_tag is not None:
            if tag == self._quote_tag:
                self._quote_nesting += 1
            return

        if _is_quote_element(tag, dict(attrs)):
            if tag not in _VOID_TAGS:
                self._quote_tag = tag
                self._quote_nesting = 0
            return

        if tag in _SKIP_TAGS:
            self._skip_depth += 1
        elif tag == "br":
            self._output.append("\n")
        elif tag == "a":
            self._link_href = dict(attrs).get("href")
            self._link_text = []
        elif tag in ("td", "th"):
            self._output.append(" ")
        elif tag in _BLOCK_TAGS:
            self._output.append("\n")

    def handle_endtag(self, tag: str) -> None:
        tag = tag.lower()

        if self._quote_tag is not None:
            if tag == self._quote_tag:
                if self._quote_nesting:
                    self._quote_nesting -= 1
                else:
                    self._quote_tag = None
            return

        if tag in _SKIP_TAGS:
            self._skip_depth = max(0, self._skip_depth - 1)
        elif tag == "a":
            self._flush_link()
        elif tag in _BLOCK_TAGS:
            self._output.append("\n")

    def handle_data(self, data: str) -> None:
        if self._skip_depth or self._quote_tag is not None:
            return
        data = re.sub(r"\s+", " ", data)
        if self._link_href is not None:
            self._link_text.append(data)
        else:
            self._output.append(data)

    def _flush_link(self) -> None:
        text = "".join(self._link_text).strip()
        href = self._link_href or ""
        self._link_href = None
        self._link_text = []
        if href and text and text != href and not href.startswith("mailto:"):
            self._output.append(f"{text} ({href})")
        else:
            self._output.append(text or href)

    def get_text(self) -> str:
        if self._link_href is not None:
            self._flush_link()
        lines = [line.strip() for line in "".join(self._output).split("\n")]
        text = "\n".join(lines)
        text = re.sub(r"\n{3,}", "\n\n", text)
        return text.strip()
