import dataclasses
import threading
import time
import typing

import pytest

from ..declarative import Entity, Identifier
from ..exceptions import MappingError, OptimisticLockError, RecordExistsError, RecordNotFoundError
from ..listeners import CallbackType
from ..marshaller import Intent
from ..records import Key
from .testing import (
    EVENTS,
    FIXED_INSTANT,
    Comment,
    Contact,
    Document,
    Task,
    fixed_clock,
)


class Rejected(Exception):
    pass


@dataclasses.dataclass
class Guarded:
    id: int = 0
    name: typing.Optional[str] = None

    class Meta:
        stereotype = Entity()
        fields = {"id": Identifier()}
        callbacks = {
            CallbackType.PRE_INSERT: "check_name",
            CallbackType.POST_LOAD: "check_loaded",
        }

    def check_name(self):
        if not self.name:
            raise Rejected("name is required")

    def check_loaded(self):
        if self.name == "banned":
            raise Rejected(f"{self.name} cannot be loaded")


@pytest.fixture(autouse=True)
def clear_events():
    EVENTS.clear()
    yield
    EVENTS.clear()


class TestEntityManager:
    @pytest.fixture
    def store(self):
        from ..implementations.memory import InMemoryRecordStore

        return InMemoryRecordStore()

    @pytest.fixture
    def manager(self, store):
        from ..cache import DescriptorCache
        from ..manager import EntityManager
        from ..mapper import RecordMapper

        return EntityManager(store, RecordMapper(cache=DescriptorCache(), clock=fixed_clock))

    def test_insert_assigns_identifier(self, manager, store):
        first = manager.insert(Contact(name="Alice"))
        second = manager.insert(Contact(name="Bob"))
        assert (first.id, second.id) == (1, 2)
        assert len(store) == 2
        assert manager.load(Contact, 1) == first

    def test_insert_existing(self, manager):
        manager.insert(Contact(id=5, name="Alice"))
        with pytest.raises(RecordExistsError):
            manager.insert(Contact(id=5, name="Alice"))

    def test_update(self, manager):
        task = manager.insert(Task(title="draft"))
        assert task.version == 1
        assert task.created_on == FIXED_INSTANT

        updated = manager.update(dataclasses.replace(task, title="final"))
        assert updated.version == 2
        assert updated.title == "final"
        assert manager.load(Task, task.id) == updated

    def test_update_missing(self, manager):
        with pytest.raises(RecordNotFoundError):
            manager.update(Contact(id=9, name="nobody"))

    def test_upsert(self, manager):
        contact = manager.upsert(Contact(id=3, name="Alice"))
        assert manager.upsert(dataclasses.replace(contact, name="Alicia")).name == "Alicia"
        assert manager.load(Contact, 3).name == "Alicia"

    def test_optimistic_lock(self, manager):
        task = manager.insert(Task(title="draft"))
        updated = manager.update_with_optimistic_lock(dataclasses.replace(task, title="final"))
        assert updated.version == 2
        assert manager.load(Task, task.id).title == "final"

    def test_optimistic_lock_stale_version(self, manager):
        task = manager.insert(Task(title="draft"))
        manager.update(task)
        with pytest.raises(OptimisticLockError) as e:
            manager.update_with_optimistic_lock(dataclasses.replace(task, title="stale"))
        assert str(e.value) == "Expecting version 1, but found 2"
        assert manager.load(Task, task.id).title == "draft"

    def test_optimistic_lock_missing_entity(self, manager):
        with pytest.raises(OptimisticLockError) as e:
            manager.update_with_optimistic_lock(Task(id=8, title="gone", version=1))
        assert str(e.value) == "Entity does not exist: Task:8"

    def test_optimistic_lock_without_version(self, manager):
        contact = manager.insert(Contact(name="Alice"))
        updated = manager.update_with_optimistic_lock(dataclasses.replace(contact, name="Al"))
        assert updated.name == "Al"

    def test_concurrent_optimistic_lock(self, manager, monkeypatch):
        from ..implementations.memory import InMemoryRecordStore

        task = manager.insert(Task(title="draft"))
        get = InMemoryRecordStore.get

        def slow_get(self, key):
            time.sleep(0.05)
            return get(self, key)

        monkeypatch.setattr(InMemoryRecordStore, "get", slow_get)

        barrier = threading.Barrier(2)
        outcomes = []

        def update(title):
            barrier.wait()
            try:
                manager.update_with_optimistic_lock(dataclasses.replace(task, title=title))
            except OptimisticLockError:
                outcomes.append("conflict")
            else:
                outcomes.append("updated")

        threads = [threading.Thread(target=update, args=(title,)) for title in ("a", "b")]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sorted(outcomes) == ["conflict", "updated"]
        assert manager.load(Task, task.id).version == 2

    def test_raising_pre_insert_listener_aborts_the_write(self, manager, store):
        with pytest.raises(Rejected) as e:
            manager.insert(Guarded())
        assert str(e.value) == "name is required"
        assert len(store) == 0

    def test_raising_post_load_listener_propagates(self, manager):
        guarded = manager.insert(Guarded(name="ok"))
        manager.update(dataclasses.replace(guarded, name="banned"))
        with pytest.raises(Rejected):
            manager.load(Guarded, guarded.id)
        assert manager.load_all(Guarded, [99]) == [None]

    def test_insert_listeners(self, manager):
        document = manager.insert(Document(title="Notes", created_by="ann"))
        assert [name for name, _ in EVENTS] == [
            "AuditListener.pre_insert",
            "BaseDocument.base_pre_insert",
            "DocumentListener.pre_insert",
            "Document.before_insert",
            "DocumentListener.post_insert",
        ]
        assert EVENTS[-1][1] is document
        assert document.id == 1

    def test_load_listeners(self, manager):
        manager.insert(Document(title="Notes"))
        EVENTS.clear()
        document = manager.load(Document, 1)
        assert EVENTS == [
            ("AuditListener.post_load", document),
            ("Document.after_load", document),
        ]

    def test_load_missing(self, manager):
        assert manager.load(Document, 1) is None
        assert EVENTS == []

    def test_delete(self, manager):
        document = manager.insert(Document(title="Notes"))
        EVENTS.clear()
        manager.delete(document)
        assert [name for name, _ in EVENTS] == ["DocumentListener.pre_delete"]
        assert manager.load(Document, document.id) is None

    def test_delete_requires_identifier(self, manager):
        with pytest.raises(MappingError):
            manager.delete(Contact(name="never stored"))

    def test_delete_by_key(self, manager):
        contact = manager.insert(Contact(name="Alice"))
        manager.delete_by_key(Key("Contact", contact.id))
        assert manager.load(Contact, contact.id) is None

    def test_load_all(self, manager):
        manager.insert_all([Contact(name="Alice"), Contact(name="Bob")])
        loaded = manager.load_all(Contact, [2, 3, 1])
        assert [c.name if c is not None else None for c in loaded] == ["Bob", None, "Alice"]

    def test_parent_key(self, manager):
        post = Key("Post", 1)
        comment = manager.insert(Comment(body="hi", parent=post))
        assert manager.load(Comment, comment.id, parent=post) == comment
        assert manager.load(Comment, comment.id) is None

    def test_batch(self, manager, monkeypatch):
        from ..mapper import RecordMapper

        intents = []
        marshal = RecordMapper.marshal

        def recording_marshal(self, entity, intent, type_ref=None):
            intents.append(intent)
            return marshal(self, entity, intent, type_ref)

        monkeypatch.setattr(RecordMapper, "marshal", recording_marshal)

        alice = manager.insert(Contact(name="Alice"))
        with manager.batch() as batch:
            batch.update(dataclasses.replace(alice, name="Alicia"))
            bob = batch.insert(Contact(name="Bob"))
            assert bob.id == 2
            assert manager.load(Contact, 2) is None
        assert intents == [Intent.INSERT, Intent.BATCH_UPDATE, Intent.INSERT]
        assert manager.load(Contact, 1).name == "Alicia"
        assert manager.load(Contact, 2).name == "Bob"

    def test_batch_discarded_on_error(self, manager):
        alice = manager.insert(Contact(name="Alice"))
        with pytest.raises(RuntimeError):
            with manager.batch() as batch:
                batch.update(dataclasses.replace(alice, name="Alicia"))
                raise RuntimeError("abort")
        assert manager.load(Contact, alice.id).name == "Alice"

    def test_failing_commit_is_rolled_back(self, manager, store):
        manager.insert(Contact(id=1, name="Alice"))
        with pytest.raises(RecordExistsError):
            with manager.transaction() as txn:
                txn.upsert(Contact(id=2, name="Bob"))
                txn.insert(Contact(id=1, name="Again"))
        assert len(store) == 1
        assert manager.load(Contact, 2) is None
