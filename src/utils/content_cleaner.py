"""Strip navigation, share widgets and footers from extracted markdown.

The cleaner looks for a confident article span: it starts at the first real
heading and ends at the first footer indicator found well after it. Noise
lines inside the span are removed. Without a confident start only the most
obvious noise is removed and nothing else is discarded.
"""

from __future__ import annotations

import logging
import re

from src.crawler.reader_client import parse_reader_header

logger = logging.getLogger(__name__)

NAVIGATION_KEYWORDS: set[str] = {
    "home",
    "blog",
    "news",
    "about",
    "contact",
    "us",
    "menu",
    "search",
    "login",
    "log",
    "in",
    "sign",
    "up",
    "products",
    "solutions",
    "pricing",
    "resources",
    "company",
    "careers",
    "support",
    "docs",
    "events",
    "partners",
    "customers",
    "all",
    "posts",
    "categories",
    "back",
    "to",
    "skip",
    "content",
    "main",
    "navigation",
    "toggle",
    "close",
    "open",
    "demo",
    "request",
    "get",
    "started",
    "free",
    "trial",
}

SOCIAL_SHARE_WORDS: set[str] = {
    "facebook",
    "twitter",
    "x",
    "whatsapp",
    "linkedin",
    "sms",
    "email",
    "print",
    "copy",
    "article",
    "link",
    "save",
    "share",
    "story",
    "this",
    "post",
    "messenger",
    "telegram",
    "pinterest",
    "reddit",
    "flipboard",
    "on",
    "via",
    "to",
}

SOCIAL_SHARE_PHRASES = (
    "share this post",
    "share this story",
    "share this article",
    "share on facebook",
    "share on twitter",
    "share on linkedin",
    "follow us on",
    "share via",
    "tweet this",
)

BOILERPLATE_PHRASES = (
    "skip to content",
    "skip to main content",
    "go to main content",
    "back to top",
    "scroll to top",
    "return to top",
    "menu toggle",
    "toggle navigation",
    "accept cookies",
    "we use cookies",
)

FOOTER_HEADINGS = (
    "related posts",
    "related articles",
    "related reading",
    "recent posts",
    "popular posts",
    "more posts",
    "more from",
    "more articles",
    "you may also like",
    "you might also like",
    "read next",
    "keep reading",
    "subscribe",
    "newsletter",
    "sign up for",
    "share this",
    "leave a reply",
    "leave a comment",
    "comments",
    "about the author",
    "follow us",
    "tags",
)

MIN_HEADING_CHARS = 20
# Non-empty lines the article must span before a footer is trusted
MIN_BODY_LINES = 5
LINK_RUN_THRESHOLD = 3
# Copyright notices are short footer lines, not prose
MAX_COPYRIGHT_LINE_CHARS = 120

_ATX_HEADING = re.compile(r"^\s{0,3}(#{1,6})\s+(.+?)\s*#*\s*$")
_SETEXT_UNDERLINE = re.compile(r"^\s{0,3}(=+|-+)\s*$")
_MARKDOWN_LINK = re.compile(r"!?\[([^\]]*)\]\([^)]*\)")
_BARE_LINK_LINE = re.compile(r"^\s*(?:[-*+]\s+|\d+\.\s+)?\[[^\]]*\]\([^)]*\)\s*$")
_IMAGE = re.compile(r"!\[([^\]]*)\]\(([^)\s]*)[^)]*\)")
_COPYRIGHT = re.compile(
    r"^(?:copyright\s*)?(?:©|\(c\)).{0,60}\b(?:19|20)\d{2}\b|^copyright\s+(?:19|20)\d{2}\b", re.IGNORECASE
)
_RIGHTS_RESERVED = re.compile(r"\ball rights reserved\b", re.IGNORECASE)
_TRACKING_HINTS = re.compile(
    r"(1x1|pixel|tracking|beacon|analytics|doubleclick|facebook\.com/tr|/collect\?|\.gif\?)",
    re.IGNORECASE,
)
_BLANK_RUNS = re.compile(r"\n{3,}")


def _plain(text: str) -> str:
    """Markdown heading/line text without links, emphasis or punctuation noise."""
    text = _MARKDOWN_LINK.sub(lambda match: match.group(1), text)
    text = re.sub(r"[*_`]+", "", text)
    return " ".join(text.split()).strip()


def _is_copyright_line(line: str) -> bool:
    text = _plain(line).lstrip("#>-*+ ")
    if len(text) > MAX_COPYRIGHT_LINE_CHARS:
        return False
    return bool(_COPYRIGHT.match(text) or _RIGHTS_RESERVED.search(text))


class ContentCleaner:
    """Markdown cleaner for reader-extracted posts."""

    def clean(self, markdown: str) -> str:
        if not markdown:
            return ""

        _, body = parse_reader_header(markdown)
        lines = body.splitlines()

        start = self.find_article_start(lines)
        if start is None:
            logger.debug("No confident article start; removing obvious noise only")
            kept = [line for line in lines if not self._is_obvious_noise(line)]
            return self._finish(kept)

        end = self.find_article_end(lines, start)
        span = lines[start:end]
        kept = [
            line
            for line in span
            if not (self._is_obvious_noise(line) or self._is_nav_link_line(line))
        ]
        logger.debug(
            "Article span lines %d-%d of %d (%d noise lines dropped)",
            start,
            end,
            len(lines),
            len(span) - len(kept),
        )
        return self._finish(kept)

    def find_article_start(self, lines: list[str]) -> int | None:
        """Index of the first ATX or setext heading that reads like a title."""
        for index, line in enumerate(lines):
            heading = None
            match = _ATX_HEADING.match(line)
            if match:
                heading = match.group(2)
            elif (
                line.strip()
                and index + 1 < len(lines)
                and _SETEXT_UNDERLINE.match(lines[index + 1])
                and not _BARE_LINK_LINE.match(line)
            ):
                heading = line
            if heading is None:
                continue
            text = _plain(heading)
            if len(text) > MIN_HEADING_CHARS and not self._is_navigation_text(text):
                return index
        return None

    def find_article_end(self, lines: list[str], start: int) -> int:
        """Index where the footer begins, or ``len(lines)`` if none is found."""
        body_lines = 0
        link_run_start = None
        link_run = 0

        for index in range(start + 1, len(lines)):
            line = lines[index]
            if not line.strip():
                continue
            body_lines += 1

            if _BARE_LINK_LINE.match(line):
                if link_run == 0:
                    link_run_start = index
                link_run += 1
            else:
                link_run = 0
                link_run_start = None

            if body_lines < MIN_BODY_LINES:
                continue

            if link_run >= LINK_RUN_THRESHOLD and link_run_start is not None:
                return link_run_start
            if self._is_footer_heading(line, lines, index):
                return index
            if _is_copyright_line(line):
                return index
        return len(lines)

    def _is_footer_heading(self, line: str, lines: list[str], index: int) -> bool:
        match = _ATX_HEADING.match(line)
        if match:
            text = match.group(2)
        elif index + 1 < len(lines) and _SETEXT_UNDERLINE.match(lines[index + 1]):
            text = line
        else:
            return False
        text = _plain(text).lower().rstrip(":")
        return any(text.startswith(heading) for heading in FOOTER_HEADINGS)

    def _is_navigation_text(self, text: str) -> bool:
        tokens = re.findall(r"[a-z']+", text.lower())
        if not tokens:
            return True
        nav = sum(1 for token in tokens if token in NAVIGATION_KEYWORDS)
        return nav / len(tokens) >= 0.8

    def _is_nav_link_line(self, line: str) -> bool:
        if not _BARE_LINK_LINE.match(line):
            return False
        text = _plain(line).lstrip("-*+ ").strip()
        return len(text.split()) <= 4 or self._is_navigation_text(text)

    def _is_obvious_noise(self, line: str) -> bool:
        stripped = line.strip()
        if not stripped:
            return False
        if self._is_tracking_image(stripped):
            return True
        lowered = " ".join(stripped.lower().split())
        plain = _plain(lowered)
        if any(plain == phrase or plain.startswith(phrase) for phrase in BOILERPLATE_PHRASES):
            return True
        return self._is_social_share_cluster(plain)

    def _is_tracking_image(self, line: str) -> bool:
        images = list(_IMAGE.finditer(line))
        if not images:
            return False
        remainder = _IMAGE.sub("", line).strip()
        if remainder:
            return False
        return all(
            not match.group(1).strip() and _TRACKING_HINTS.search(match.group(2) or "")
            for match in images
        )

    def _detect_social_share_prefix_end(self, text: str) -> int | None:
        """Return index after leading social-share keywords, if present."""
        share_run = 0
        last_end = None
        for match in re.finditer(r"[A-Za-z']+", text):
            if match.group().lower() in SOCIAL_SHARE_WORDS:
                share_run += 1
                last_end = match.end()
                continue
            break
        if share_run < 3:
            return None
        return last_end

    def _is_social_share_cluster(self, text: str) -> bool:
        """Return True when text is dominated by social-share keywords."""
        normalized = " ".join(re.findall(r"[a-z']+", text.lower())).strip()
        if not normalized:
            return False

        tokens = normalized.split()
        if any(phrase in normalized for phrase in SOCIAL_SHARE_PHRASES):
            if len(tokens) <= 20 and sum(1 for token in tokens if token in SOCIAL_SHARE_WORDS) >= len(tokens) * 0.6:
                return True

        prefix_end = self._detect_social_share_prefix_end(normalized)
        if prefix_end is None:
            return False
        remainder = normalized[prefix_end:].split()
        return all(token in SOCIAL_SHARE_WORDS for token in remainder)

    @staticmethod
    def _finish(lines: list[str]) -> str:
        text = "\n".join(line.rstrip() for line in lines)
        return _BLANK_RUNS.sub("\n\n", text).strip()
