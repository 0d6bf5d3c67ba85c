from __future__ import annotations

from typing import Any, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

_CAMEL = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class FeedSource(BaseModel):
    """A configured feed. Read-only to the pipeline."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    name: str
    url: str = ""        # website shown to readers
    rss_url: str         # what we hand to the conversion endpoint
    is_active: bool = True
    is_video_source: bool = False


class Enclosure(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    link: str = ""
    mime_type: str = Field("", alias="type")

    @field_validator("link", "mime_type", mode="before")
    @classmethod
    def _text(cls, v: Any) -> str:
        return "" if v is None else str(v)


class RawFeedItem(BaseModel):
    """One item as returned by rss2json. Lives for a single fetch."""

    model_config = _CAMEL

    title: str = ""
    link: str = ""
    pub_date: str = ""
    guid: str = ""
    enclosure: Optional[Enclosure] = None
    thumbnail: str = ""
    description: str = ""
    content: str = ""
    categories: List[str] = []

    @field_validator("title", "link", "pub_date", "guid", "thumbnail", "description", "content", mode="before")
    @classmethod
    def _text(cls, v: Any) -> str:
        return "" if v is None else str(v)

    @field_validator("enclosure", mode="before")
    @classmethod
    def _enclosure(cls, v: Any) -> Any:
        # rss2json sends {} or [] when there is no enclosure
        if not isinstance(v, dict) or not v:
            return None
        return v

    @field_validator("categories", mode="before")
    @classmethod
    def _categories(cls, v: Any) -> List[str]:
        if not isinstance(v, (list, tuple)):
            return []
        return [str(c) for c in v if c is not None and not isinstance(c, (dict, list))]


class Article(BaseModel):
    """Pipeline output. Only `thumbnail` changes after creation (see apply_thumbnail)."""

    model_config = _CAMEL

    id: str
    title: str
    link: str
    pub_date: str = ""
    content_snippet: str = ""
    thumbnail: Optional[str] = None
    source_title: str = ""
    source_icon: Optional[str] = None
    categories: List[str] = []
    is_video: bool = False


def apply_thumbnail(articles: Iterable[Article], article_id: str, image_url: str) -> bool:
    """Set the thumbnail of the article with `article_id` if it has none yet.

    Returns True when an article was updated. Thumbnails chosen by the primary
    pipeline are never replaced.
    """
    for article in articles:
        if article.id == article_id and article.thumbnail is None:
            article.thumbnail = image_url
            return True
    return False
