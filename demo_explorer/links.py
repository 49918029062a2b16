from __future__ import annotations

"""Candidate links and the built-in composable link filters.

A link filter is a pure predicate ``(link, node) -> bool``; ``True`` keeps the
link. Filters registered on an ExplorationStrategy are combined with logical AND
and evaluated in registration order.
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional
from urllib.parse import urlparse

if TYPE_CHECKING:
    from .navigation_graph import NavigationNode


@dataclass
class Link:
    """A clickable element discovered on a page."""

    text: str = ""
    href: str = ""
    selector: str = ""
    is_nav: bool = False  # link sits inside nav / header / role=navigation
    extra: Dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def label(self) -> str:
        return self.text or self.selector or self.href

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "text": self.text,
            "href": self.href,
            "selector": self.selector,
            "isNav": self.is_nav,
        }
        if self.extra:
            data["extra"] = dict(self.extra)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Link":
        return cls(
            text=data.get("text") or "",
            href=data.get("href") or "",
            selector=data.get("selector") or "",
            is_nav=bool(data.get("isNav") or data.get("isNavigation") or data.get("is_nav")),
            extra=dict(data.get("extra") or {}),
        )


LinkFilter = Callable[[Link, Optional["NavigationNode"]], bool]


ASSET_EXTENSIONS = (
    ".pdf", ".jpg", ".jpeg", ".png", ".gif", ".svg", ".ico",
    ".mp4", ".webm", ".mp3", ".wav", ".zip", ".tar", ".gz",
    ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx",
    ".css", ".js", ".woff", ".woff2", ".ttf", ".eot",
)

AUTH_KEYWORDS = (
    "login", "log in", "signin", "sign in", "signup", "sign up",
    "register", "auth", "oauth", "sso", "password", "forgot",
    "reset-password", "verify", "confirmation",
)

LEGAL_KEYWORDS = (
    "terms", "privacy", "policy", "legal", "disclaimer",
    "cookie", "gdpr", "ccpa", "compliance", "tos",
)

SOCIAL_DOMAINS = (
    "twitter.com", "x.com", "facebook.com", "linkedin.com",
    "instagram.com", "youtube.com", "tiktok.com", "pinterest.com",
    "reddit.com", "discord.com", "discord.gg", "github.com",
    "medium.com", "substack.com",
)

BLOG_KEYWORDS = (
    "blog", "news", "press", "article", "post",
    "/blog/", "/news/", "/press/", "/articles/",
)


def _text_and_href(link: Link) -> tuple[str, str]:
    return link.text.lower(), link.href.lower()


def _matches_hyphenated(link: Link, keywords: tuple[str, ...]) -> bool:
    """Keyword match on text, or on href with spaces turned into hyphens."""
    text, href = _text_and_href(link)
    for keyword in keywords:
        if keyword in text or keyword.replace(" ", "-") in href:
            return True
    return False


def _hostname_matches(hostname: str, domain: str) -> bool:
    return hostname == domain or hostname.endswith("." + domain)


# ---------------------------------------------------------------------------
# built-in filters ----------------------------------------------------------


def skip_invalid_links(link: Link, node: Optional["NavigationNode"] = None) -> bool:
    """Reject hrefs that do not parse as http(s) URLs. Links without href pass."""
    if not link.href:
        return True
    try:
        parsed = urlparse(link.href)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def skip_assets(link: Link, node: Optional["NavigationNode"] = None) -> bool:
    if not link.href:
        return True
    try:
        path = urlparse(link.href).path.lower()
    except ValueError:
        return True
    return not path.endswith(ASSET_EXTENSIONS)


def skip_auth_pages(link: Link, node: Optional["NavigationNode"] = None) -> bool:
    return not _matches_hyphenated(link, AUTH_KEYWORDS)


def skip_legal_pages(link: Link, node: Optional["NavigationNode"] = None) -> bool:
    text, href = _text_and_href(link)
    return not any(keyword in text or keyword in href for keyword in LEGAL_KEYWORDS)


def skip_social_links(link: Link, node: Optional["NavigationNode"] = None) -> bool:
    if not link.href:
        return True
    try:
        hostname = (urlparse(link.href).hostname or "").lower()
    except ValueError:
        return True
    return not any(_hostname_matches(hostname, domain) for domain in SOCIAL_DOMAINS)


def skip_blog_pages(link: Link, node: Optional["NavigationNode"] = None) -> bool:
    text, href = _text_and_href(link)
    return not any(keyword in text or keyword in href for keyword in BLOG_KEYWORDS)


def create_domain_filter(base_domain: str) -> LinkFilter:
    """Return a filter keeping only links on ``base_domain`` or one of its subdomains."""
    base = base_domain.lower().lstrip(".")

    def _same_domain(link: Link, node: Optional["NavigationNode"] = None) -> bool:
        if not link.href:
            return False
        try:
            hostname = (urlparse(link.href).hostname or "").lower()
        except ValueError:
            return False
        return _hostname_matches(hostname, base)

    _same_domain.__name__ = f"same_domain[{base}]"
    return _same_domain
