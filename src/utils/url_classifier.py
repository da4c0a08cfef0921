"""URL classification utilities for filtering non-article pages during discovery.

Everything here works on the URL alone (no network): path-segment heuristics
for sitemap/map entries, listing-link exclusion for the pagination walker,
content-section detection, language detection and URL-embedded dates.
"""

from __future__ import annotations

import re
from datetime import date
from urllib.parse import parse_qs, urlparse

from src.crawler.utils import get_domain, path_segments

# Section names that mark a path as content (blog, case studies, docs, ...)
CONTENT_SECTION_PATTERNS = frozenset(
    [
        # Blog / articles / news
        "blog", "blogs", "article", "articles", "post", "posts", "news", "newsroom",
        "press", "press-releases", "announcements", "updates", "insights",
        # Case studies / success stories
        "case-study", "case-studies", "casestudy", "casestudies", "customer-story",
        "customer-stories", "success-story", "success-stories", "use-case", "use-cases",
        # Testimonials / reviews
        "testimonial", "testimonials", "review", "reviews", "feedback",
        "customer-feedback", "customer-reviews",
        # Documentation / help
        "help", "help-center", "helpcenter", "support", "docs", "documentation",
        "guide", "guides", "tutorial", "tutorials", "how-to", "howto", "faq", "faqs",
        "learn", "learning", "knowledge", "knowledge-base", "knowledgebase", "kb",
        # Resources / whitepapers
        "resource", "resources", "whitepaper", "whitepapers", "white-paper", "white-papers",
        "ebook", "ebooks", "e-book", "e-books", "report", "reports", "research",
        "download", "downloads", "library",
        # Events / webinars
        "event", "events", "webinar", "webinars", "podcast", "podcasts", "video", "videos",
        # Industry pages
        "solutions", "products", "services", "features", "industries", "verticals",
        # Localized variants
        "actualites", "noticias", "nachrichten", "nouvelles",
        "etudes-de-cas", "estudios-de-caso", "fallstudien",
        "temoignages", "ressources", "ressourcen",
    ]
)

# Navigation, utility, pagination, feed and media paths never treated as posts
EXCLUDED_PATH_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"^/?(tag|tags|category|categories|author|authors|archive|archives)/?$",
        r"^/?(search|login|logout|signin|signout|register|signup|account|profile)/?$",
        r"^/?(cart|checkout|payment|order|orders)/?$",
        r"^/?(privacy|terms|legal|cookie|cookies|gdpr|imprint|impressum)/?$",
        r"^/?(contact|about|team|careers|jobs|sitemap)/?$",
        r"/(tag|tags|category|categories|author|authors|archive|archives)(/|$)",
        r"/page[-_]?/?\d+/?$",
        r"/p/\d+/?$",
        r"/(feed|rss|atom|sitemap)(\.xml)?/?$",
        r"\.(xml|json|txt|css|js)$",
        r"\.(jpg|jpeg|png|gif|svg|webp|pdf|doc|docx|xls|xlsx|ppt|pptx|mp3|mp4|zip)$",
        r"^/api/",
        r"^/wp-(admin|content|includes|json)/",
    )
]

PAGINATION_QUERY_PARAMS = ("page", "paged", "p")

# Link paths the pagination walker skips on listing pages
LISTING_EXCLUDED_SUBSTRINGS = (
    "/category/", "/tag/", "/tags/", "/author/", "/authors/", "/page/", "/pages/",
    "/archive/", "/archives/", "/search", "/sitemap", "/feed", "/rss", "/atom",
    "/contact", "/about", "/privacy", "/terms", "/legal", "/subscribe", "/newsletter",
    "/login", "/register", "/signup", "/sign-in", "/wp-admin", "/wp-content",
    "/wp-includes", "/.well-known", "/solutions/", "/products/", "/product/",
    "/services/", "/service/", "/industries/", "/industry/", "/company/", "/team/",
    "/careers/", "/career/", "/jobs/", "/job/", "/pricing/", "/prices/", "/demo/",
    "/demos/", "/download/", "/downloads/", "/resources/", "/resource/", "/library",
    "/whitepaper/", "/whitepapers/", "/webinar/", "/webinars/", "/video/", "/videos/",
    "/news/", "/publication/", "/publications/", "/customer-story/",
    "/customer-stories/", "/case-study/", "/case-studies/", "/brochure/", "/brochures/",
)

LISTING_EXCLUDED_QUERY_PARAMS = frozenset(
    ["category", "tag", "author", "page", "paged", "search", "s", "filter", "sort", "orderby", "order"]
)

MEDIA_EXTENSIONS = (
    ".jpg", ".jpeg", ".png", ".gif", ".webp", ".svg", ".ico", ".bmp", ".tiff", ".pdf",
    ".mp4", ".mp3", ".avi", ".mov", ".wmv", ".zip", ".rar", ".exe", ".dmg",
)

ASSET_HOST_MARKERS = ("cdn.", "static.", "assets.")

URL_DATE_PATTERNS = [
    re.compile(r"/(\d{4})/(\d{1,2})/(\d{1,2})(?:/|$)"),
    re.compile(r"/(\d{4})-(\d{1,2})-(\d{1,2})(?:/|$|-)"),
    re.compile(r"/(\d{4})(\d{2})(\d{2})(?:/|$)"),
]

_DATE_IN_PATH = re.compile(r"/\d{4}/\d{1,2}/|/\d{4}-\d{2}-\d{2}/")
_DATE_ARCHIVE = re.compile(r"^/\d{4}(/\d{2})?/?$")
_TRAILING_NUMBER = re.compile(r"[-_]?\d+$")

# code -> (name, subdomain/path aliases beyond the code itself)
SUPPORTED_LANGUAGES: dict[str, tuple[str, tuple[str, ...]]] = {
    "en": ("English", ("eng", "english", "en-us", "en-gb", "en-au", "en-ca", "en-uk", "us", "uk")),
    "de": ("German", ("ger", "german", "deutsch", "de-de", "de-at", "de-ch")),
    "es": ("Spanish", ("spa", "spanish", "espanol", "es-es", "es-mx", "es-ar", "es-latam")),
    "fr": ("French", ("fra", "fre", "french", "francais", "fr-fr", "fr-ca", "fr-be", "fr-ch")),
    "it": ("Italian", ("ita", "italian", "italiano", "it-it", "it-ch")),
    "pt": ("Portuguese", ("por", "portuguese", "portugues", "pt-br", "pt-pt", "br")),
    "nl": ("Dutch", ("nld", "dut", "dutch", "nederlands", "nl-nl", "nl-be")),
    "ja": ("Japanese", ("jpn", "japanese", "jp", "ja-jp")),
    "zh": ("Chinese", ("chi", "chinese", "cn", "zh-cn", "zh-tw", "zh-hk", "zh-hans", "zh-hant")),
    "ko": ("Korean", ("kor", "korean", "kr", "ko-kr")),
    "ru": ("Russian", ("rus", "russian", "ru-ru")),
    "pl": ("Polish", ("pol", "polish", "polski", "pl-pl")),
    "sv": ("Swedish", ("swe", "swedish", "svenska", "se", "sv-se")),
    "no": ("Norwegian", ("nor", "norwegian", "norsk", "nb", "nn", "nb-no")),
    "da": ("Danish", ("dan", "danish", "dansk", "dk", "da-dk")),
    "fi": ("Finnish", ("fin", "finnish", "suomi", "fi-fi")),
    "tr": ("Turkish", ("tur", "turkish", "turkce", "tr-tr")),
    "ar": ("Arabic", ("ara", "arabic", "ar-sa", "ar-ae")),
    "he": ("Hebrew", ("heb", "hebrew", "he-il")),
    "hu": ("Hungarian", ("hun", "hungarian", "magyar", "hu-hu")),
}

_LANGUAGE_ALIASES: dict[str, str] = {}
for _code, (_name, _aliases) in SUPPORTED_LANGUAGES.items():
    _LANGUAGE_ALIASES.setdefault(_code, _code)
    for _alias in _aliases:
        _LANGUAGE_ALIASES.setdefault(_alias, _code)
        _LANGUAGE_ALIASES.setdefault(_alias.replace("-", "_"), _code)


def is_excluded_url(url: str) -> bool:
    """True for navigation, taxonomy, pagination, feed, media and API URLs."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return True
    path = parsed.path or "/"
    for pattern in EXCLUDED_PATH_PATTERNS:
        if pattern.search(path):
            return True
    query = parse_qs(parsed.query)
    if any(param in query for param in ("page", "paged")):
        return True
    return False


def detect_content_section(url_or_path: str) -> str | None:
    """Return the content section a path belongs to (``blog``, ``case-studies``...)."""
    path = urlparse(url_or_path).path if "://" in url_or_path else url_or_path
    segments = [segment for segment in path.lower().split("/") if segment]
    for index, segment in enumerate(segments):
        normalized = _TRAILING_NUMBER.sub("", segment)
        if normalized in CONTENT_SECTION_PATTERNS:
            return normalized
        # "blog-2024/..." counts as a section, "blog-post-title" as last segment does not
        if index < len(segments) - 1:
            for pattern in CONTENT_SECTION_PATTERNS:
                if segment.startswith((f"{pattern}-", f"{pattern}_")):
                    return pattern
    return None


def looks_like_content_item(url: str, content_section: str | None = None) -> bool:
    """Heuristic: does ``url`` point at one item rather than a listing page?"""
    segments = [segment.lower() for segment in path_segments(url)]
    if not segments:
        return False
    last = segments[-1]

    if content_section:
        for index, segment in enumerate(segments):
            if segment == content_section or segment.startswith(
                (f"{content_section}-", f"{content_section}_")
            ):
                return index < len(segments) - 1

    has_slug = "-" in last and len(last) > 10
    has_depth = len(segments) >= 2
    last_is_not_section = last not in CONTENT_SECTION_PATTERNS
    has_date = bool(_DATE_IN_PATH.search(urlparse(url).path.lower()))
    return has_slug or (has_depth and last_is_not_section and len(last) > 5) or has_date


def is_candidate_post_url(url: str) -> bool:
    """Filter applied to sitemap and map entries.

    Rejects the root, excluded paths, single-segment paths that are not a
    long hyphenated slug, numeric last segments and anything that does not
    look like a content item.
    """
    if is_excluded_url(url):
        return False
    segments = [segment.lower() for segment in path_segments(url)]
    if not segments:
        return False
    last = segments[-1]
    if last.isdigit():
        return False
    if len(segments) == 1 and (len(last) < 15 or "-" not in last):
        return False

    section = detect_content_section(url)
    if looks_like_content_item(url, section):
        return True
    return "-" in last and len(last) > 15


def is_excluded_listing_link(url: str, listing_url: str) -> bool:
    """Exclusion rules for links found on a listing page.

    Section substrings that the listing page itself lives under (e.g.
    ``/news/`` when walking ``/news``) are not held against its links.
    """
    try:
        parsed = urlparse(url)
        listing = urlparse(listing_url)
    except ValueError:
        return True

    if "#" in url:
        return True
    normalized = url.rstrip("/")
    if normalized == listing_url.rstrip("/") or normalized == f"{listing.scheme}://{listing.netloc}":
        return True

    host = (parsed.hostname or "").lower()
    if get_domain(url) != get_domain(listing_url):
        return True
    if any(marker in host for marker in ASSET_HOST_MARKERS):
        return True

    path = parsed.path.lower()
    if path.endswith(MEDIA_EXTENSIONS):
        return True
    if any(param in LISTING_EXCLUDED_QUERY_PARAMS for param in parse_qs(parsed.query)):
        return True

    own_sections = {f"/{segment.lower()}" for segment in path_segments(listing_url)}
    for substring in LISTING_EXCLUDED_SUBSTRINGS:
        if substring.rstrip("/") in own_sections:
            continue
        if substring in path:
            return True

    if _DATE_ARCHIVE.match(path):
        return True
    if path.endswith(("/feed", "/rss", "/atom", "/sitemap.xml", "/robots.txt")):
        return True

    segments = [segment for segment in path.split("/") if segment]
    if not segments or (len(segments) == 1 and len(segments[0]) < 5):
        return True
    return False


def extract_date_from_url(url: str) -> str | None:
    """Return an ISO date embedded in the URL path (``/2024/01/15/``)."""
    try:
        path = urlparse(url).path
    except ValueError:
        return None
    for pattern in URL_DATE_PATTERNS:
        match = pattern.search(path)
        if not match:
            continue
        year, month, day = (int(part) for part in match.groups())
        try:
            return date(year, month, day).isoformat()
        except ValueError:
            continue
    return None


def detect_language_from_url(url: str) -> str | None:
    """Detect an ISO 639-1 code from subdomain, path prefix or query string."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return None

    host = (parsed.hostname or "").lower()
    subdomain = host.split(".", 1)[0] if host.count(".") >= 2 else ""
    if subdomain.startswith("www-"):
        subdomain = subdomain[4:]
    if subdomain in _LANGUAGE_ALIASES:
        return _LANGUAGE_ALIASES[subdomain]

    segments = path_segments(url)
    if segments:
        first = segments[0].lower()
        if first in _LANGUAGE_ALIASES:
            return _LANGUAGE_ALIASES[first]

    query = parse_qs(parsed.query)
    for key in ("lang", "language", "locale", "hl"):
        for value in query.get(key, []):
            value = value.lower()
            code = _LANGUAGE_ALIASES.get(value) or _LANGUAGE_ALIASES.get(value[:2])
            if code:
                return code
    return None


def get_language_name(code: str) -> str:
    entry = SUPPORTED_LANGUAGES.get(code)
    return entry[0] if entry else code.upper()


def filter_by_language(
    urls: list,
    language: str | None,
    include_undetected: bool = True,
) -> list:
    """Keep items whose ``language`` matches; undetected ones optionally kept.

    Items are anything with a ``url`` attribute and an optional
    ``language`` attribute (``DiscoveredUrl``).
    """
    if not language:
        return list(urls)
    language = _LANGUAGE_ALIASES.get(language.lower(), language.lower())
    kept = []
    for item in urls:
        detected = getattr(item, "language", None) or detect_language_from_url(item.url)
        if detected == language or (detected is None and include_undetected):
            kept.append(item)
    return kept


def classify_url_batch(urls: list[str]) -> tuple[list[str], list[str]]:
    """Classify a batch of URLs into likely posts and filtered-out URLs.

    Args:
        urls: List of URLs to classify

    Returns:
        Tuple of (likely_posts, filtered_out)
    """
    likely_posts = []
    filtered_out = []

    for url in urls:
        if is_candidate_post_url(url):
            likely_posts.append(url)
        else:
            filtered_out.append(url)

    return likely_posts, filtered_out
