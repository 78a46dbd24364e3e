"""
Article Repository

Read access to uploaded articles (the `articles` table).
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from socratic_assessment.errors import DatastoreError

logger = logging.getLogger(__name__)

ARTICLES_TABLE = "articles"


def _as_list(value: Any) -> List[str]:
    if not value:
        return []
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except (json.JSONDecodeError, ValueError):
            return [value]
    return [str(v) for v in value] if isinstance(value, list) else []


@dataclass
class Article:
    """Article metadata used to build prompts."""
    id: str
    title: str
    authors: List[str] = field(default_factory=list)
    abstract: Optional[str] = None
    main_topics: List[str] = field(default_factory=list)
    keywords: List[str] = field(default_factory=list)
    full_text: Optional[str] = None

    @property
    def topics_line(self) -> str:
        return ", ".join(self.main_topics) or "Not available"

    @classmethod
    def from_row(cls, data: Dict[str, Any]) -> "Article":
        return cls(
            id=str(data["id"]),
            title=data.get("title") or "Untitled",
            authors=_as_list(data.get("authors")),
            abstract=data.get("abstract"),
            main_topics=_as_list(data.get("main_topics")),
            keywords=_as_list(data.get("keywords")),
            full_text=data.get("full_text"),
        )


class ArticleRepository:
    """Loads articles from Supabase, or from an in-memory map when no client is given."""

    def __init__(self, supabase_client=None, articles: Optional[Dict[str, Article]] = None):
        self.supabase = supabase_client
        self.use_supabase = supabase_client is not None
        self._in_memory_articles: Dict[str, Article] = dict(articles or {})

    def add_article(self, article: Article) -> None:
        """Register an article in the in-memory map."""
        self._in_memory_articles[article.id] = article

    async def get_article(self, article_id: str) -> Optional[Article]:
        if not self.use_supabase:
            return self._in_memory_articles.get(article_id)

        try:
            result = self.supabase.table(ARTICLES_TABLE) \
                .select('*') \
                .eq('id', article_id) \
                .limit(1) \
                .execute()
        except Exception as e:
            logger.error(f"❌ [ArticleRepository] Error loading article {article_id}: {e}")
            raise DatastoreError("Failed to load article", details=str(e)) from e

        if result.data:
            return Article.from_row(result.data[0])
        return None
