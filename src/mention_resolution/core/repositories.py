"""
Staging repositories for articles, mentions, relations and review items
"""
import asyncio
import json
import logging
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import redis.asyncio as redis
from redis.exceptions import WatchError

from src.mention_resolution.core.entities import (
    Article,
    Mention,
    MentionType,
    RelationMention,
    ReviewQueueItem,
    ReviewStatus,
)
from src.mention_resolution.core.exceptions import InvalidTransitionError, NotFoundError, ReviewItemNotFoundError
from config.settings import settings

logger = logging.getLogger(__name__)

ItemMutation = Callable[[ReviewQueueItem], None]


class ArticleRepository:
    """In-memory article staging table"""

    def __init__(self):
        self._articles: Dict[str, Article] = {}

    async def add(self, article: Article) -> Article:
        self._articles.setdefault(article.id, article)
        return self._articles[article.id]

    async def get(self, article_id: str) -> Article:
        article = self._articles.get(article_id)
        if article is None:
            raise NotFoundError("Article", article_id)
        return article

    async def fetch_unprocessed(self, limit: Optional[int] = None) -> List[Article]:
        """Oldest unprocessed articles first"""
        pending = sorted(
            (a for a in self._articles.values() if not a.processed),
            key=lambda a: a.created_at,
        )
        return pending[:limit] if limit is not None else pending

    async def mark_processed(self, article_id: str) -> None:
        article = await self.get(article_id)
        article.processed = True


class MentionRepository:
    """In-memory mention staging table; mentions are keyed by their deterministic id"""

    def __init__(self):
        self._mentions: Dict[str, Mention] = {}

    async def add(self, mention: Mention) -> bool:
        """
        Store a mention unless its id is already present

        Returns:
            True if stored, False if it already existed
        """
        if mention.id in self._mentions:
            return False
        self._mentions[mention.id] = mention
        return True

    async def get(self, mention_id: str) -> Mention:
        mention = self._mentions.get(mention_id)
        if mention is None:
            raise NotFoundError("Mention", mention_id)
        return mention

    async def replace(self, mention: Mention) -> None:
        """Overwrite a stored mention (merge rewrites only)"""
        if mention.id not in self._mentions:
            raise NotFoundError("Mention", mention.id)
        self._mentions[mention.id] = mention

    async def list_by_type(self, mention_type: MentionType) -> List[Mention]:
        return [m for m in self._mentions.values() if m.type == mention_type]

    async def list_by_article(self, article_id: str) -> List[Mention]:
        return [m for m in self._mentions.values() if m.source_article_id == article_id]


class RelationRepository:
    """In-memory relation staging table"""

    def __init__(self):
        self._relations: Dict[str, RelationMention] = {}

    async def add(self, relation: RelationMention) -> bool:
        if relation.id in self._relations:
            return False
        self._relations[relation.id] = relation
        return True

    async def list_by_article(self, article_id: str) -> List[RelationMention]:
        return [r for r in self._relations.values() if r.source_article_id == article_id]

    async def list_by_mention(self, mention_id: str) -> List[RelationMention]:
        """Relations where the mention is subject or object"""
        return [
            r for r in self._relations.values()
            if mention_id in (r.subject_mention_id, r.object_mention_id)
        ]


def _check_transition(item: ReviewQueueItem, expected: Optional[ReviewStatus], action: str) -> None:
    if expected is not None and item.status != expected:
        raise InvalidTransitionError(item.mention_id, item.status.value, action)


class InMemoryReviewItemStore:
    """
    Review items kept as serialized snapshots; updates are compare-and-set
    under one asyncio lock
    """

    def __init__(self):
        self._items: Dict[str, dict] = {}
        self._lock = asyncio.Lock()

    async def get(self, mention_id: str) -> Optional[ReviewQueueItem]:
        data = self._items.get(mention_id)
        return ReviewQueueItem.from_dict(data) if data else None

    async def add_if_absent(self, item: ReviewQueueItem) -> Tuple[ReviewQueueItem, bool]:
        """
        Store a new item unless one exists for the mention

        Returns:
            (stored item, created)
        """
        async with self._lock:
            if item.mention_id in self._items:
                return ReviewQueueItem.from_dict(self._items[item.mention_id]), False
            self._items[item.mention_id] = item.to_dict()
            return ReviewQueueItem.from_dict(self._items[item.mention_id]), True

    async def update(
        self,
        mention_id: str,
        mutate: ItemMutation,
        expected_status: Optional[ReviewStatus] = None,
        action: str = "update"
    ) -> ReviewQueueItem:
        """
        Apply a mutation atomically

        Args:
            mention_id: Item key
            mutate: Callable editing the item in place
            expected_status: Status the item must still be in
            action: Action name for error messages

        Returns:
            Updated item

        Raises:
            ReviewItemNotFoundError: If the item does not exist
            InvalidTransitionError: If the item left the expected status
        """
        async with self._lock:
            data = self._items.get(mention_id)
            if data is None:
                raise ReviewItemNotFoundError(mention_id)

            item = ReviewQueueItem.from_dict(data)
            _check_transition(item, expected_status, action)
            mutate(item)
            self._items[mention_id] = item.to_dict()
            return ReviewQueueItem.from_dict(self._items[mention_id])

    async def list(self, status: Optional[ReviewStatus] = None) -> List[ReviewQueueItem]:
        items = [ReviewQueueItem.from_dict(d) for d in self._items.values()]
        if status is not None:
            items = [i for i in items if i.status == status]
        return sorted(items, key=lambda i: i.created_at)

    async def close(self) -> None:
        return None


class RedisReviewItemStore:
    """
    Review items stored as JSON strings in Redis; updates use WATCH/MULTI so a
    concurrent writer forces a retry instead of a lost update
    """

    def __init__(self, redis_url: Optional[str] = None, key_prefix: Optional[str] = None):
        self.redis_url = redis_url or settings.redis_url
        self.key_prefix = key_prefix or settings.review_key_prefix
        self._redis: Optional[redis.Redis] = None

    async def connect(self):
        """Connect to Redis."""
        if not self._redis:
            self._redis = await redis.from_url(
                self.redis_url, encoding="utf-8", decode_responses=True
            )

    async def close(self):
        """Disconnect from Redis."""
        if self._redis:
            await self._redis.close()
            self._redis = None

    def _item_key(self, mention_id: str) -> str:
        return f"{self.key_prefix}:item:{mention_id}"

    @property
    def _index_key(self) -> str:
        return f"{self.key_prefix}:items"

    async def get(self, mention_id: str) -> Optional[ReviewQueueItem]:
        await self.connect()
        raw = await self._redis.get(self._item_key(mention_id))
        return ReviewQueueItem.from_dict(json.loads(raw)) if raw else None

    async def add_if_absent(self, item: ReviewQueueItem) -> Tuple[ReviewQueueItem, bool]:
        await self.connect()
        created = await self._redis.set(
            self._item_key(item.mention_id), json.dumps(item.to_dict()), nx=True
        )
        if created:
            await self._redis.sadd(self._index_key, item.mention_id)
            return item, True

        stored = await self.get(item.mention_id)
        return stored, False

    async def update(
        self,
        mention_id: str,
        mutate: ItemMutation,
        expected_status: Optional[ReviewStatus] = None,
        action: str = "update"
    ) -> ReviewQueueItem:
        """Compare-and-set via optimistic locking; retries on concurrent writes"""
        await self.connect()
        key = self._item_key(mention_id)

        async with self._redis.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(key)
                    raw = await pipe.get(key)
                    if raw is None:
                        raise ReviewItemNotFoundError(mention_id)

                    item = ReviewQueueItem.from_dict(json.loads(raw))
                    _check_transition(item, expected_status, action)
                    mutate(item)

                    pipe.multi()
                    pipe.set(key, json.dumps(item.to_dict()))
                    await pipe.execute()
                    return item
                except WatchError:
                    logger.debug(f"Concurrent update on review item {mention_id}, retrying")
                    continue

    async def list(self, status: Optional[ReviewStatus] = None) -> List[ReviewQueueItem]:
        await self.connect()
        mention_ids = await self._redis.smembers(self._index_key)
        items = []
        for raw in await self._fetch_many(mention_ids):
            if raw:
                items.append(ReviewQueueItem.from_dict(json.loads(raw)))

        if status is not None:
            items = [i for i in items if i.status == status]
        return sorted(items, key=lambda i: i.created_at)

    async def _fetch_many(self, mention_ids: Iterable[str]) -> List[Optional[str]]:
        keys = [self._item_key(m) for m in mention_ids]
        if not keys:
            return []
        return await self._redis.mget(keys)
