from __future__ import annotations
"""
Extractor layer
---------------
Finds, validates and ranks the representative image of a feed item, and
cleans up its text fields. Nothing here touches the network: the per-source
fetcher feeds it rss2json items, the backfill feeds it downloaded pages.

Public API:
    candidate_images(item)                       -> [url, ...] discovery order
    is_valid_image_url(url, feed_image, link)    -> bool
    score_image_url(url, title)                  -> int
    image_frequency(items)                       -> Counter(url -> #items)
    select_thumbnail(item, feed_image, freq)     -> Optional[url]
    page_image(html, page_url)                   -> Optional[url]  (og/JSON-LD/twitter/article img)
    strip_html(), decode_title(), truncate(), abs_url(), to_https()
"""

import html
import json
import logging
import re
from collections import Counter
from dataclasses import dataclass
from typing import Any, Iterable, Iterator, List, Optional, Tuple
from urllib.parse import urljoin, urlparse

from sonaa.config import settings
from sonaa.workers.models import RawFeedItem

__all__ = [
    "ImageRules",
    "ImageCandidate",
    "DEFAULT_IMAGE_RULES",
    "candidate_images",
    "is_valid_image_url",
    "score_image_url",
    "rank_candidates",
    "image_frequency",
    "select_thumbnail",
    "upgrade_video_thumbnail",
    "page_image",
    "strip_html",
    "decode_title",
    "truncate",
    "abs_url",
    "to_https",
]

log = logging.getLogger("sonaa.extract")

# ============================== Config ===============================

IMG_EXTS = (".jpg", ".jpeg", ".png", ".webp", ".gif")

# lazy-load attributes first: those themes leave src as a 1x1 placeholder
LAZY_ATTRS = ("data-src", "data-lazy-src", "data-original")

# Tracking pixels, ad servers, share buttons, avatars, CMS chrome, stock hosts
# and stock-photo vocabulary. Matched as lowercase substrings.
BAD_IMAGE_PATTERNS: Tuple[str, ...] = (
    "feeds.feedburner.com", "~r/",
    "doubleclick.net", "gravatar.com", "emoji", "facebook.com/tr",
    "pixel", "blank.gif", "spacer.gif", "1x1",
    "share-icon", "button", "avatar", "logo", "icon", "author",
    "googleusercontent", "feed-icon", "icon-",
    "shutterstock", "istockphoto", "gettyimages", "depositphotos",
    "stock-photo", "stock_photo", "stockphoto",
    "unsplash.com", "pexels.com", "pixabay.com", "freepik.com",
    "ad.", "ads.", "adserver", "advertising", "banner",
    "twitter.com/intent", "facebook.com/sharer", "pinterest.com/pin",
    "placeholder", "default-image", "no-image", "noimage",
    "flower", "flowers", "nature", "landscape", "sunset", "sunrise",
    "abstract-background", "business-people", "happy-people", "smiling",
    "handshake", "teamwork", "office-worker",
)

# Hosts we trust even when they differ from the article's own host.
TRUSTED_IMAGE_DOMAINS: Tuple[str, ...] = (
    # WordPress / CMS CDNs
    "wp.com", "wordpress.com", "i0.wp.com", "i1.wp.com", "i2.wp.com", "i3.wp.com",
    # music publishers
    "synthanatomy.com", "gearnews.com", "musicradar.com", "attackmagazine.com",
    "cdm.link", "kvraudio.com", "soundonsound.com", "bedroomproducersblog.com",
    "pluginboutique.com", "xlr8r.com", "mixmag.net", "ra.co", "residentadvisor.net",
    "guettapen.com", "tsugi.fr", "electro-news.eu", "traxmag.com", "bandcamp.com",
    "midnightrebels.com", "subvert.fm", "audiofanzine.com", "lessondiers.com",
    "kr-homestudio.fr", "gearspace.com", "frandroid.com",
    # tech publishers
    "tomsguide.com", "iphon.fr", "jeuxvideo.com", "theverge.com",
    "petapixel.com", "korben.info", "clubic.com", "synthtopia.com",
    "lesnumeriques.com", "engadget.com", "9to5google.com", "musictech.com",
    # video thumbnails
    "i.ytimg.com", "img.youtube.com", "ytimg.com",
    # generic CDNs
    "cloudinary.com", "imgix.net", "fastly.net", "akamaized.net",
    "cloudfront.net", "amazonaws.com", "s3.amazonaws.com",
)

GOOD_MEDIA_TOKENS: Tuple[str, ...] = (
    "synthanatomy", "gearnews", "musicradar", "attackmagazine",
    "cdm.link", "kvraudio", "soundonsound", "bedroomproducers",
    "pluginboutique", "wordpress", "wp-content",
)

CONTENT_PATH_TOKENS: Tuple[str, ...] = (
    "product", "feature", "upload", "content", "article",
    "post", "news", "review", "synth", "plugin", "vst",
)

SMALL_SIZE_RE = re.compile(r"[_-](?:50|100|150|32|64|thumb|small|mini)")
LARGE_SIZE_RE = re.compile(r"[_-](?:800|1200|1024|large|full|featured)")

# Page-level matches that are site chrome, not the article's image.
PAGE_CHROME_RE = re.compile(r"(logo|icon|avatar|favicon|sprite|gravatar|placeholder|blank\.gif|1x1)", re.I)

ARTICLE_CONTAINER_RE = re.compile(
    r"<article\b|class=[\"'][^\"']*\b(?:entry-content|post-content|article-body|article-content|"
    r"article__body|post-body|story-body)\b",
    re.I,
)
MIN_PAGE_IMG_SIZE = 200


@dataclass(frozen=True)
class ImageRules:
    denylist: Tuple[str, ...] = BAD_IMAGE_PATTERNS
    trusted_domains: Tuple[str, ...] = TRUSTED_IMAGE_DOMAINS
    good_media_tokens: Tuple[str, ...] = GOOD_MEDIA_TOKENS
    content_tokens: Tuple[str, ...] = CONTENT_PATH_TOKENS
    min_url_length: int = 20


DEFAULT_IMAGE_RULES = ImageRules()


@dataclass(frozen=True)
class ImageCandidate:
    url: str
    score: int
    order: int


# ============================== Debug helper =========================

def dlog(msg: str, *kv: Any) -> None:
    if settings.extract_debug:
        details = " | ".join(repr(k) for k in kv) if kv else ""
        log.info("[extract] %s%s", msg, (" " + details) if details else "")

# ============================== URL helpers ==========================

def abs_url(url: Optional[str], base: str) -> Optional[str]:
    if not url:
        return None
    url = html.unescape(url.strip())
    if not url:
        return None
    try:
        u = urlparse(url)
        if not u.scheme and base:
            return urljoin(base, url)
    except ValueError:
        # e.g. unbalanced IPv6 brackets: "http://[::1/x.jpg"
        dlog("malformed url", url)
        return None
    return url

def to_https(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    if url.startswith("//"):
        return "https:" + url
    if url.startswith("http://"):
        return "https://" + url[7:]
    return url

def _host(url: str) -> str:
    try:
        host = (urlparse(url).hostname or "").lower()
    except ValueError:
        return ""
    return host[4:] if host.startswith("www.") else host

def _has_image_ext(path_or_url: str) -> bool:
    base = path_or_url.split("?", 1)[0].lower()
    return base.endswith(IMG_EXTS)

def _extract_base_href(s: str, fallback: str) -> str:
    m = re.search(r'<base[^>]+href=["\']([^"\']+)["\']', s, flags=re.I)
    if m:
        return to_https(m.group(1)) or fallback
    return fallback

# ============================== <img> scanning =======================

_IMG_TAG_RE = re.compile(r"<img\b[^>]*>", re.I)
_ATTR_RE = re.compile(r"([\w:-]+)\s*=\s*([\"'])(.*?)\2", re.S)

def _img_attrs(tag: str) -> dict:
    return {m.group(1).lower(): html.unescape(m.group(3).strip()) for m in _ATTR_RE.finditer(tag)}

def _img_source(attrs: dict) -> Optional[str]:
    for attr in LAZY_ATTRS + ("src",):
        val = attrs.get(attr)
        if val and not val.startswith("data:"):
            return val
    return None

def _iter_img_sources(html_str: Optional[str]) -> Iterator[Tuple[str, dict]]:
    """Yield (source, attrs) for every <img> in the block, lazy attrs first."""
    if not html_str:
        return
    for m in _IMG_TAG_RE.finditer(html_str):
        attrs = _img_attrs(m.group(0))
        src = _img_source(attrs)
        if src:
            yield src, attrs

# ===================== Feed item candidates ==========================

def candidate_images(item: RawFeedItem) -> List[str]:
    """
    Every plausible image URL of one item, in discovery order:
    image enclosure, thumbnail field, then each <img> in description and content.
    Relative URLs are resolved against the item link; unparseable URLs are
    dropped, nothing else is filtered.
    """
    base = item.link
    out: List[str] = []

    enc = item.enclosure
    if enc and enc.link:
        if enc.mime_type.lower().startswith("image") or _has_image_ext(enc.link):
            out.append(enc.link)

    if item.thumbnail and len(item.thumbnail) > 5:
        out.append(item.thumbnail)

    for block in (item.description, item.content):
        for src, _ in _iter_img_sources(block):
            out.append(src)

    resolved = (abs_url(u, base) for u in out)
    return [u for u in resolved if u]

# ===================== Validation ====================================

def is_valid_image_url(
    url: str,
    feed_image: Optional[str],
    article_url: str,
    rules: ImageRules = DEFAULT_IMAGE_RULES,
) -> bool:
    """
    Closed-world check: denylist first, then the image must come from the
    article's own domain or a trusted CDN. Everything else is rejected.
    """
    if not url or len(url) < rules.min_url_length:
        return False
    lower = url.lower()

    if any(p in lower for p in rules.denylist):
        return False

    # feed masthead: exact, or same path with a different query string
    if feed_image:
        if url == feed_image:
            return False
        clean_logo = feed_image.split("?", 1)[0].lower()
        if clean_logo and clean_logo in lower:
            return False

    image_domain = _host(url)
    article_domain = _host(article_url)
    if image_domain and article_domain and article_domain.split(".")[0] in image_domain:
        return True

    return any(t in image_domain or t in lower for t in rules.trusted_domains)

# ===================== Scoring =======================================

def _title_words(title: str) -> List[str]:
    words = [w.strip(".,!?\"'()[]:;«»“”") for w in (title or "").lower().split()]
    return [w for w in words if len(w) > 3]

def score_image_url(url: str, title: str, rules: ImageRules = DEFAULT_IMAGE_RULES) -> int:
    """
    Relative relevance of one image for one article. Only meaningful when
    comparing candidates of the same item.
    """
    lower = url.lower()
    score = 0

    # image named after the article (product shots usually are)
    for word in _title_words(title):
        if word in lower:
            score += 10

    if any(d in lower for d in rules.good_media_tokens):
        score += 5

    for token in rules.content_tokens:
        if token in lower:
            score += 3

    if SMALL_SIZE_RE.search(lower):
        score -= 5
    if LARGE_SIZE_RE.search(lower):
        score += 5

    return score

def rank_candidates(urls: Iterable[str], title: str, rules: ImageRules = DEFAULT_IMAGE_RULES) -> List[ImageCandidate]:
    """Best first; equal scores keep discovery order (sorted() is stable)."""
    scored = [ImageCandidate(u, score_image_url(u, title, rules), i) for i, u in enumerate(urls)]
    return sorted(scored, key=lambda c: c.score, reverse=True)

# ===================== Frequency =====================================

def image_frequency(items: Iterable[RawFeedItem]) -> Counter:
    """How many items of one feed produced each candidate (once per item)."""
    freq: Counter = Counter()
    for item in items:
        freq.update(set(candidate_images(item)))
    return freq

# ===================== Selection =====================================

def select_thumbnail(
    item: RawFeedItem,
    feed_image: Optional[str],
    frequency: Counter,
    rules: ImageRules = DEFAULT_IMAGE_RULES,
    repeat_threshold: int = 2,
) -> Optional[str]:
    """extract -> validate -> drop template assets -> score -> pick."""
    valid = [u for u in candidate_images(item) if is_valid_image_url(u, feed_image, item.link, rules)]
    unique = [u for u in valid if frequency.get(u, 0) <= repeat_threshold]
    ranked = rank_candidates(unique, item.title, rules)
    dlog("candidates", item.link, [(c.url, c.score) for c in ranked[:3]])
    return ranked[0].url if ranked else None

_YT_LOWRES_RE = re.compile(r"/(?:mq)?default\.jpg", re.I)

def upgrade_video_thumbnail(url: str) -> str:
    """YouTube default.jpg / mqdefault.jpg -> hqdefault.jpg."""
    return _YT_LOWRES_RE.sub("/hqdefault.jpg", url, count=1)

# ===================== Page discovery (backfill) =====================

def _meta_contents(s: str, names: str) -> List[str]:
    """content= of <meta property|name="<names>">, either attribute order."""
    out: List[str] = []
    key = rf'(?:property|name)=["\'](?:{names})["\']'
    for pat in (
        rf'<meta[^>]+{key}[^>]*content=["\']([^"\']+)["\']',
        rf'<meta[^>]+content=["\']([^"\']+)["\'][^>]*{key}',
    ):
        for m in re.finditer(pat, s, flags=re.I):
            out.append(m.group(1))
    return out

def _ld_images(s: str) -> List[str]:
    out: List[str] = []

    def collect(val: Any) -> None:
        if isinstance(val, str):
            out.append(val)
        elif isinstance(val, dict):
            for k in ("url", "contentUrl"):
                if isinstance(val.get(k), str):
                    out.append(val[k])
                    break
        elif isinstance(val, list):
            for it in val:
                collect(it)

    for m in re.finditer(r'<script[^>]+type=["\']application/ld\+json["\'][^>]*>(.*?)</script>', s, flags=re.I | re.S):
        raw = m.group(1).strip()
        try:
            data = json.loads(raw)
        except ValueError:
            continue
        objs = data if isinstance(data, list) else [data]
        expanded: List[Any] = []
        for obj in objs:
            if isinstance(obj, dict) and isinstance(obj.get("@graph"), list):
                expanded.extend(obj["@graph"])
            else:
                expanded.append(obj)
        for obj in expanded:
            if not isinstance(obj, dict):
                continue
            for k in ("image", "thumbnailUrl"):
                if obj.get(k):
                    collect(obj[k])
    return out

def _size_attr(attrs: dict, name: str) -> Optional[int]:
    m = re.match(r"\s*(\d+)", attrs.get(name, ""))
    return int(m.group(1)) if m else None

def _article_images(s: str) -> List[str]:
    m = ARTICLE_CONTAINER_RE.search(s)
    if not m:
        return []
    out: List[str] = []
    for src, attrs in _iter_img_sources(s[m.start():]):
        w, h = _size_attr(attrs, "width"), _size_attr(attrs, "height")
        if (w is not None and w < MIN_PAGE_IMG_SIZE) or (h is not None and h < MIN_PAGE_IMG_SIZE):
            continue
        out.append(src)
    return out

def page_image(page_html: str, page_url: str) -> Optional[str]:
    """
    Representative image of an article page, by priority:
    og:image, JSON-LD image/thumbnailUrl, twitter:image, first large <img>
    inside the article body. Site chrome (logos, icons, avatars) is skipped.
    """
    if not page_html:
        return None
    base = _extract_base_href(page_html, page_url)

    tiers = (
        ("og", lambda: _meta_contents(page_html, r"og:image|og:image:url|og:image:secure_url")),
        ("ld+json", lambda: _ld_images(page_html)),
        ("twitter", lambda: _meta_contents(page_html, r"twitter:image|twitter:image:src")),
        ("article-img", lambda: _article_images(page_html)),
    )
    for tier, find in tiers:
        for raw in find():
            u = to_https(abs_url(raw, base))
            if not u or not u.startswith("https://"):
                continue
            if PAGE_CHROME_RE.search(u):
                dlog("skip chrome", tier, u)
                continue
            dlog("page image", tier, u)
            return u
    return None

# ===================== Text fields ===================================

def strip_html(text: str) -> str:
    if not text:
        return ""
    no_code = re.sub(r"<(script|style)\b[^>]*>.*?</\1>", " ", text, flags=re.I | re.S)
    no_tags = re.sub(r"<[^>]+>", " ", no_code)
    no_tags = html.unescape(no_tags)
    return re.sub(r"\s+", " ", no_tags).strip()

def decode_title(title: str) -> str:
    # feeds often double-encode: "&amp;#8217;" -> "&#8217;" -> "’"
    once = html.unescape(title or "")
    return re.sub(r"\s+", " ", html.unescape(once)).strip()

def truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit].rstrip() + "..."
