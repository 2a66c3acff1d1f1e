import logging
import threading
import typing

from .exceptions import CyclicEmbeddingError

logger = logging.getLogger(__name__)

K = typing.TypeVar("K", bound=typing.Hashable)
V = typing.TypeVar("V")


class DescriptorCache:
    """
    A get-or-populate store for descriptors. Entries are never evicted.

    Population of a given key happens at most once even when several threads
    ask for it at the same time. Builds run one at a time behind a reentrant
    lock, so a build may populate the entries it depends on, and other threads
    block until it finishes and then observe the stored entry. Lookups of
    stored entries take no lock. A build that raises stores nothing.

    A build that asks for a key still being built on its own thread is
    reported as :py:class:`CyclicEmbeddingError`.
    """

    _entries: typing.Dict[typing.Hashable, typing.Any]
    _lock: typing.ContextManager[bool]
    _local: threading.local

    def _in_progress(self) -> typing.Set[typing.Hashable]:
        try:
            return self._local.in_progress
        except AttributeError:
            in_progress: typing.Set[typing.Hashable] = set()
            self._local.in_progress = in_progress
            return in_progress

    def get(self, key: typing.Hashable) -> typing.Optional[typing.Any]:
        return self._entries.get(key)

    def get_or_create(self, key: K, factory: typing.Callable[[K], V]) -> V:
        try:
            return self._entries[key]
        except KeyError:
            pass

        in_progress = self._in_progress()
        if key in in_progress:
            raise CyclicEmbeddingError(f"{key!r} refers to itself while being described")

        with self._lock:
            try:
                return self._entries[key]
            except KeyError:
                pass
            logger.debug("building descriptor for %r", key)
            in_progress.add(key)
            try:
                value = factory(key)
            finally:
                in_progress.discard(key)
            self._entries[key] = value
        return value

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, key: typing.Hashable) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __init__(self):
        self._entries = {}
        self._lock = threading.RLock()
        self._local = threading.local()


_default_cache: typing.Optional[DescriptorCache] = None
_default_cache_lock = threading.Lock()


def default_cache() -> DescriptorCache:
    """
    Returns the process-wide cache used by mappers that are not given one.
    """
    global _default_cache
    if _default_cache is None:
        with _default_cache_lock:
            if _default_cache is None:
                _default_cache = DescriptorCache()
    return _default_cache
