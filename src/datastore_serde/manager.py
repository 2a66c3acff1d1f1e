import contextlib
import logging
import typing

from .exceptions import OptimisticLockError
from .interfaces import RecordStore
from .listeners import CallbackType
from .mapper import RecordMapper
from .marshaller import Intent
from .models import EntityDescriptor
from .records import IdType, Key, Record

logger = logging.getLogger(__name__)

T = typing.TypeVar("T")

_WRITE_CALLBACKS: typing.Mapping[Intent, typing.Tuple[CallbackType, CallbackType]] = {
    Intent.INSERT: (CallbackType.PRE_INSERT, CallbackType.POST_INSERT),
    Intent.UPDATE: (CallbackType.PRE_UPDATE, CallbackType.POST_UPDATE),
    Intent.BATCH_UPDATE: (CallbackType.PRE_UPDATE, CallbackType.POST_UPDATE),
    Intent.UPSERT: (CallbackType.PRE_UPSERT, CallbackType.POST_UPSERT),
}


class EntityManager:
    """
    Reads and writes entities through a :py:class:`RecordStore`.

    Every write fires the entity's ``PRE_*`` listeners, marshals, writes, and
    fires the ``POST_*`` listeners on the entity rebuilt from the stored record,
    which is what the write returns. Loads fire ``POST_LOAD``.

    :param RecordStore store: where records live.
    :param RecordMapper mapper: converts between entities and records.
    """

    store: RecordStore
    mapper: RecordMapper
    in_batch: bool

    def _descr(self, entity: typing.Any, type_ref: typing.Any) -> EntityDescriptor:
        return self.mapper.introspect(type_ref if type_ref is not None else type(entity))

    def _update_intent(self) -> Intent:
        return Intent.BATCH_UPDATE if self.in_batch else Intent.UPDATE

    def _write(
        self, entities: typing.Sequence[T], intent: Intent, type_ref: typing.Any = None
    ) -> typing.List[T]:
        if not entities:
            return []
        pre, post = _WRITE_CALLBACKS[intent]
        descrs = [self._descr(entity, type_ref) for entity in entities]
        for descr, entity in zip(descrs, entities):
            descr.listeners.invoke(pre, entity)
        records = [
            typing.cast(Record, self.mapper.marshal(entity, intent, descr.type_ref))
            for descr, entity in zip(descrs, entities)
        ]
        if intent is Intent.INSERT:
            stored = self.store.insert(records)
        elif intent is Intent.UPSERT:
            stored = self.store.upsert(records)
        else:
            stored = self.store.update(records)
        result = []
        for descr, record in zip(descrs, stored):
            entity = self.mapper.unmarshal(record, descr.type_ref)
            descr.listeners.invoke(post, entity)
            result.append(entity)
        return result

    def insert(self, entity: T, type_ref: typing.Any = None) -> T:
        return self._write([entity], Intent.INSERT, type_ref)[0]

    def insert_all(self, entities: typing.Sequence[T], type_ref: typing.Any = None) -> typing.List[T]:
        return self._write(entities, Intent.INSERT, type_ref)

    def update(self, entity: T, type_ref: typing.Any = None) -> T:
        return self._write([entity], self._update_intent(), type_ref)[0]

    def update_all(self, entities: typing.Sequence[T], type_ref: typing.Any = None) -> typing.List[T]:
        return self._write(entities, self._update_intent(), type_ref)

    def upsert(self, entity: T, type_ref: typing.Any = None) -> T:
        return self._write([entity], Intent.UPSERT, type_ref)[0]

    def upsert_all(self, entities: typing.Sequence[T], type_ref: typing.Any = None) -> typing.List[T]:
        return self._write(entities, Intent.UPSERT, type_ref)

    def update_with_optimistic_lock(self, entity: T, type_ref: typing.Any = None) -> T:
        """
        Updates ``entity`` only if the stored version is the one ``entity``
        was read with. Types without a version field are updated as usual.

        :raises OptimisticLockError: if the record is gone or its version moved on.
        """
        descr = self._descr(entity, type_ref)
        version = descr.version
        if version is None:
            return self.update(entity, type_ref)

        descr.listeners.invoke(CallbackType.PRE_UPDATE, entity)
        record = typing.cast(Record, self.mapper.marshal(entity, Intent.UPDATE, descr.type_ref))
        key = typing.cast(Key, record.key)
        with self.store.transaction() as txn:
            current = txn.get(key)
            if current is None:
                raise OptimisticLockError(f"Entity does not exist: {key}")
            expected = record[version.mapped_name].value - 1
            stored_version = current.get(version.mapped_name)
            found = stored_version.value if stored_version is not None else None
            if found != expected:
                logger.debug("version conflict on %s: expected %s, found %s", key, expected, found)
                raise OptimisticLockError(f"Expecting version {expected}, but found {found}")
            (stored,) = txn.update([record])
        updated = self.mapper.unmarshal(stored, descr.type_ref)
        descr.listeners.invoke(CallbackType.POST_UPDATE, updated)
        return updated

    def delete(self, entity: typing.Any, type_ref: typing.Any = None) -> None:
        self.delete_all([entity], type_ref)

    def delete_all(self, entities: typing.Sequence[typing.Any], type_ref: typing.Any = None) -> None:
        descrs = [self._descr(entity, type_ref) for entity in entities]
        for descr, entity in zip(descrs, entities):
            descr.listeners.invoke(CallbackType.PRE_DELETE, entity)
        self.store.delete(
            [self.mapper.marshal_key(entity, descr.type_ref) for descr, entity in zip(descrs, entities)]
        )
        for descr, entity in zip(descrs, entities):
            descr.listeners.invoke(CallbackType.POST_DELETE, entity)

    def delete_by_key(self, key: Key) -> None:
        self.store.delete([key])

    def load_by_key(self, type_ref: typing.Type[T], key: Key) -> typing.Optional[T]:
        descr = self.mapper.introspect(type_ref)
        entity = self.mapper.unmarshal(self.store.get(key), type_ref)
        descr.listeners.invoke(CallbackType.POST_LOAD, entity)
        return entity

    def load(
        self, type_ref: typing.Type[T], id: IdType, parent: typing.Optional[Key] = None
    ) -> typing.Optional[T]:
        descr = self.mapper.introspect(type_ref)
        return self.load_by_key(type_ref, Key(descr.kind, id, parent))

    def load_all(
        self,
        type_ref: typing.Type[T],
        ids: typing.Sequence[IdType],
        parent: typing.Optional[Key] = None,
    ) -> typing.List[typing.Optional[T]]:
        descr = self.mapper.introspect(type_ref)
        records = self.store.get_many([Key(descr.kind, id, parent) for id in ids])
        result = []
        for record in records:
            entity = self.mapper.unmarshal(record, type_ref)
            descr.listeners.invoke(CallbackType.POST_LOAD, entity)
            result.append(entity)
        return result

    @contextlib.contextmanager
    def batch(self) -> typing.Iterator["EntityManager"]:
        """
        Returns a context manager yielding a manager whose writes are applied
        together when the block exits normally. Updates in the batch are
        marshalled with :py:attr:`Intent.BATCH_UPDATE`.
        """
        with self.store.transaction() as txn:
            yield EntityManager(txn, self.mapper, in_batch=True)

    @contextlib.contextmanager
    def transaction(self) -> typing.Iterator["EntityManager"]:
        with self.store.transaction() as txn:
            yield EntityManager(txn, self.mapper, in_batch=self.in_batch)

    def __init__(self, store: RecordStore, mapper: typing.Optional[RecordMapper] = None, in_batch: bool = False):
        self.store = store
        self.mapper = mapper if mapper is not None else RecordMapper()
        self.in_batch = in_batch
