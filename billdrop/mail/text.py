"""Plain-text helpers for message bodies."""

from html.parser import HTMLParser

#: Maximum characters of normalised body kept per message.
BODY_CHAR_LIMIT = 5_000

_SKIPPED_TAGS = frozenset({"script", "style", "head", "title"})


class _HTMLStripper(HTMLParser):
    """Collects visible text nodes, ignoring script/style content."""

    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self._parts: list[str] = []
        self._skip_depth = 0

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        if tag in _SKIPPED_TAGS:
            self._skip_depth += 1
        elif tag == "a":
            # Keep link targets: cancellation URLs often live only in href.
            href = dict(attrs).get("href")
            if href and href.startswith("http"):
                self._parts.append(href)

    def handle_endtag(self, tag: str) -> None:
        if tag in _SKIPPED_TAGS and self._skip_depth:
            self._skip_depth -= 1

    def handle_data(self, data: str) -> None:
        if self._skip_depth:
            return
        text = data.strip()
        if text:
            self._parts.append(text)

    def get_text(self) -> str:
        return " ".join(self._parts)


def strip_html(text: str) -> str:
    """Return plain text from an HTML string.

    If the input doesn't look like HTML, or stripping produces nothing useful,
    the original string is returned unchanged.
    """
    if "<" not in text:
        return text
    stripper = _HTMLStripper()
    try:
        stripper.feed(text)
        stripper.close()
    except Exception:  # noqa: BLE001
        return text
    result = stripper.get_text()
    return result if result.strip() else text


def normalize_body(body: str | None, snippet: str | None = None, limit: int = BODY_CHAR_LIMIT) -> str:
    """Build the body stored on a RawMessage.

    The provider snippet is prefixed because it is clean pre-parsed text even
    when the body is mostly markup.
    """
    plain = " ".join(strip_html(body or "").split())
    if snippet:
        plain = f"SNIPPET: {snippet.strip()} END_SNIPPET. {plain}".rstrip()
    return plain[:limit]
