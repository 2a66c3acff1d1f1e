import concurrent.futures
import dataclasses
import threading
import typing

import pytest

from ..declarative import Embeddable, Embedded
from .testing import Contact, Customer


@dataclasses.dataclass
class Left:
    label: typing.Optional[str] = None
    right: typing.Optional["Right"] = None

    class Meta:
        stereotype = Embeddable()
        fields = {"right": Embedded()}


@dataclasses.dataclass
class Right:
    label: typing.Optional[str] = None
    left: typing.Optional[Left] = None

    class Meta:
        stereotype = Embeddable()
        fields = {"left": Embedded()}


class TestDescriptorCache:
    @pytest.fixture
    def cache(self):
        from ..cache import DescriptorCache

        return DescriptorCache()

    def test_get_or_create(self, cache):
        calls = []

        def factory(key):
            calls.append(key)
            return key * 2

        assert cache.get_or_create(21, factory) == 42
        assert cache.get_or_create(21, factory) == 42
        assert calls == [21]
        assert 21 in cache
        assert len(cache) == 1
        assert cache.get(21) == 42

    def test_failed_build_stores_nothing(self, cache):
        def factory(key):
            raise ValueError(key)

        with pytest.raises(ValueError):
            cache.get_or_create("a", factory)
        assert "a" not in cache
        assert cache.get_or_create("a", lambda key: key.upper()) == "A"

    def test_self_reference_is_cyclic(self, cache):
        from ..exceptions import CyclicEmbeddingError

        def factory(key):
            return cache.get_or_create(key, factory)

        with pytest.raises(CyclicEmbeddingError):
            cache.get_or_create("loop", factory)
        assert "loop" not in cache

    def test_clear(self, cache):
        cache.get_or_create(1, str)
        cache.clear()
        assert len(cache) == 0

    def test_concurrent_first_use_builds_once(self, cache, monkeypatch):
        from ..introspector import TypeIntrospector
        from ..mappers import MapperRegistry

        introspector = TypeIntrospector(cache, MapperRegistry())
        build = TypeIntrospector._build
        calls = []
        calls_lock = threading.Lock()

        def counting_build(self, type_ref):
            with calls_lock:
                calls.append(type_ref)
            return build(self, type_ref)

        monkeypatch.setattr(TypeIntrospector, "_build", counting_build)

        workers = 8
        barrier = threading.Barrier(workers)

        def introspect(type_ref):
            barrier.wait()
            return introspector.introspect(type_ref)

        with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as executor:
            results = list(
                executor.map(introspect, [Contact, Customer] * (workers // 2))
            )

        assert sorted(calls, key=lambda t: t.__name__) == [Contact, Customer]
        assert all(r is results[0] for r in results[0::2])
        assert all(r is results[1] for r in results[1::2])

    def test_concurrent_mutual_embedding_is_cyclic(self, cache):
        from ..exceptions import CyclicEmbeddingError
        from ..introspector import TypeIntrospector
        from ..mappers import MapperRegistry

        introspector = TypeIntrospector(cache, MapperRegistry())
        barrier = threading.Barrier(2)
        errors = []

        def introspect(class_):
            barrier.wait()
            try:
                introspector.introspect_embeddable(class_)
            except CyclicEmbeddingError as e:
                errors.append(e)

        threads = [
            threading.Thread(target=introspect, args=(class_,), daemon=True)
            for class_ in (Left, Right)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=5)

        assert not any(thread.is_alive() for thread in threads)
        assert len(errors) == 2
        assert len(cache) == 0


def test_default_cache_is_shared():
    from ..cache import default_cache
    from ..mapper import RecordMapper

    assert default_cache() is default_cache()
    assert RecordMapper().cache is default_cache()
