"""
Client-side join of primary documents with the documents they reference.

The store has no server-side join, so every snapshot fans out one point read
per distinct referenced id and fans back in before anything is published.
"""
import asyncio
from typing import Awaitable, Callable, Dict, Generic, List, Optional, Sequence, TypeVar

from .data_models import Author, Profile, unknown_author
from .debug_log import get_logger
from .store import Document, DocumentStore

logger = get_logger("join")

P = TypeVar("P")
S = TypeVar("S")
R = TypeVar("R")


class JoinResolver(Generic[S]):
    """Resolve secondary records by id, degrading failures to a placeholder.

    ``fetch(id)`` returns the secondary record or None when absent.
    ``placeholder(id)`` builds the stand-in used for absent or failed ids.
    """

    def __init__(self, fetch: Callable[[str], Awaitable[Optional[S]]], placeholder: Callable[[str], S]):
        self.fetch = fetch
        self.placeholder = placeholder

    async def _fetch_one(self, key: str) -> S:
        try:
            found = await self.fetch(key)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.warning("join lookup failed for %r, using placeholder", key, exc_info=True)
            return self.placeholder(key)
        if found is None:
            logger.debug("join lookup for %r found nothing", key)
            return self.placeholder(key)
        return found

    async def lookup(self, keys: Sequence[str]) -> Dict[str, S]:
        distinct = list(dict.fromkeys(keys))
        results = await asyncio.gather(*(self._fetch_one(k) for k in distinct))
        return dict(zip(distinct, results))

    async def resolve(
        self,
        primaries: Sequence[P],
        key: Callable[[P], str],
        merge: Callable[[P, S], R],
    ) -> List[R]:
        """Join every primary with its secondary as one batch, preserving order."""
        keys = [key(p) for p in primaries]
        resolved = await self.lookup(keys)
        return [merge(p, resolved[k]) for p, k in zip(primaries, keys)]


def profile_resolver(store: DocumentStore) -> JoinResolver[Author]:
    """Resolver from user id to the author slice of ``profiles/{id}``."""

    async def fetch(user_id: str) -> Optional[Author]:
        if not user_id:
            return None
        doc: Optional[Document] = await store.get("profiles", user_id)
        if doc is None:
            return None
        return Profile.from_document(doc).as_author()

    return JoinResolver(fetch, unknown_author)
