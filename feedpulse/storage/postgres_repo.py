"""Postgres-backed source registry and article store.

Plain psycopg + SQL. The article store never relies on a prior lookup for
uniqueness: the insert itself is ``ON CONFLICT (original_url) DO NOTHING``
and an empty RETURNING surfaces as DuplicateArticleError.
"""

from __future__ import annotations

from typing import List, Optional

import psycopg

from feedpulse.errors import DuplicateArticleError, SourceNotFoundError, StorageError
from feedpulse.ingestion.article_types import Article, CandidateItem, Source


_SOURCE_COLUMNS = (
    "id, name, url, feed_url, tier, is_active, last_fetched_at, last_error, last_error_at"
)


def _row_to_source(row) -> Source:
    (sid, name, url, feed_url, tier, is_active, last_fetched_at, last_error, last_error_at) = row
    return Source(
        id=str(sid),
        name=name,
        url=url,
        feed_url=feed_url or None,
        tier=int(tier) if tier is not None else 4,
        is_active=bool(is_active),
        last_fetched_at=last_fetched_at,
        last_error=last_error,
        last_error_at=last_error_at,
    )


class PostgresSourceRegistry:
    def __init__(self, pg_dsn: str):
        self.pg_dsn = pg_dsn

    def _connect(self, **kwargs):
        return psycopg.connect(self.pg_dsn, **kwargs)

    def list_active_sources(self) -> List[Source]:
        try:
            with self._connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        f"SELECT {_SOURCE_COLUMNS} FROM sources WHERE is_active ORDER BY tier, name"
                    )
                    rows = cur.fetchall()
        except psycopg.Error as e:
            raise StorageError(f"failed to list active sources: {e}") from e
        return [_row_to_source(r) for r in rows]

    def get_source(self, source_id: str) -> Source:
        try:
            with self._connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(f"SELECT {_SOURCE_COLUMNS} FROM sources WHERE id = %s", (source_id,))
                    row = cur.fetchone()
        except psycopg.Error as e:
            raise StorageError(f"failed to load source {source_id}: {e}") from e
        if row is None:
            raise SourceNotFoundError(f"source not found: {source_id}")
        return _row_to_source(row)

    def mark_fetch_succeeded(self, source_id: str) -> None:
        self._update(
            """
            UPDATE sources
            SET last_fetched_at = now(), last_error = NULL, last_error_at = NULL, updated_at = now()
            WHERE id = %s
            """,
            (source_id,),
        )

    def mark_fetch_failed(self, source_id: str, message: str) -> None:
        self._update(
            """
            UPDATE sources
            SET last_error = %s, last_error_at = now(), updated_at = now()
            WHERE id = %s
            """,
            (message, source_id),
        )

    def _update(self, sql: str, params) -> None:
        try:
            with self._connect(autocommit=True) as conn:
                with conn.cursor() as cur:
                    cur.execute(sql, params)
                    if cur.rowcount == 0:
                        raise SourceNotFoundError(f"source not found: {params[-1]}")
        except psycopg.Error as e:
            raise StorageError(f"failed to update source bookkeeping: {e}") from e


class PostgresArticleStore:
    def __init__(self, pg_dsn: str):
        self.pg_dsn = pg_dsn

    def _connect(self):
        return psycopg.connect(self.pg_dsn)

    def find_article_by_url(self, url: str) -> Optional[Article]:
        try:
            with self._connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        """
                        SELECT a.id, a.source_id, a.original_url, a.title, a.content, a.summary,
                               a.published_at, a.image_url, a.author, a.created_at,
                               COALESCE(array_agg(t.name ORDER BY t.name) FILTER (WHERE t.name IS NOT NULL), '{}')
                        FROM articles a
                        LEFT JOIN article_tags at ON at.article_id = a.id
                        LEFT JOIN tags t ON t.id = at.tag_id
                        WHERE a.original_url = %s
                        GROUP BY a.id
                        """,
                        (url,),
                    )
                    row = cur.fetchone()
        except psycopg.Error as e:
            raise StorageError(f"article lookup failed for {url}: {e}") from e
        if row is None:
            return None
        (aid, source_id, original_url, title, content, summary, published_at, image_url, author, created_at, tags) = row
        return Article(
            id=str(aid),
            source_id=str(source_id),
            original_url=original_url,
            title=title,
            content=content,
            summary=summary,
            published_at=published_at,
            image_url=image_url,
            author=author,
            tags=list(tags or []),
            created_at=created_at,
        )

    def create_article(self, *, source_id: str, original_url: str, item: CandidateItem) -> Article:
        """Insert one article and its tags in a single transaction.

        Raises DuplicateArticleError when ``original_url`` is already taken.
        """
        tag_names = list(dict.fromkeys(item.tags))
        try:
            with self._connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        """
                        INSERT INTO articles (
                          source_id, original_url, title, content, summary, published_at, image_url, author
                        )
                        VALUES (
                          %(source_id)s, %(original_url)s, %(title)s, %(content)s, %(summary)s,
                          %(published_at)s, %(image_url)s, %(author)s
                        )
                        ON CONFLICT (original_url) DO NOTHING
                        RETURNING id, created_at
                        """,
                        {
                            "source_id": source_id,
                            "original_url": original_url,
                            "title": item.title,
                            "content": item.content,
                            "summary": item.summary,
                            "published_at": item.published_at,
                            "image_url": item.image_url,
                            "author": item.author,
                        },
                    )
                    row = cur.fetchone()
                    if row is None:
                        raise DuplicateArticleError(original_url)
                    article_id, created_at = row
                    for name in tag_names:
                        # DO UPDATE (not NOTHING) so RETURNING yields the existing id too
                        cur.execute(
                            """
                            INSERT INTO tags (name) VALUES (%s)
                            ON CONFLICT (name) DO UPDATE SET name = EXCLUDED.name
                            RETURNING id
                            """,
                            (name,),
                        )
                        tag_id = cur.fetchone()[0]
                        cur.execute(
                            """
                            INSERT INTO article_tags (article_id, tag_id) VALUES (%s, %s)
                            ON CONFLICT DO NOTHING
                            """,
                            (article_id, tag_id),
                        )
        except psycopg.errors.UniqueViolation as e:
            raise DuplicateArticleError(original_url) from e
        except psycopg.Error as e:
            raise StorageError(f"failed to create article {original_url}: {e}") from e

        return Article(
            id=str(article_id),
            source_id=source_id,
            original_url=original_url,
            title=item.title,
            content=item.content,
            summary=item.summary,
            published_at=item.published_at,
            image_url=item.image_url,
            author=item.author,
            tags=tag_names,
            created_at=created_at,
        )
