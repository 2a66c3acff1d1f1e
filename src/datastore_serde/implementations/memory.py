import contextlib
import copy
import logging
import threading
import typing

from ..exceptions import RecordExistsError, RecordNotFoundError, RecordStoreError
from ..interfaces import RecordStore
from ..records import Key, Record

logger = logging.getLogger(__name__)


class InMemoryRecordStore(RecordStore):
    """
    A thread-safe record store kept in a dict. Integer ids are allocated per
    kind, starting at 1. Records are copied on the way in and out.

    A transaction holds the store lock until it commits or fails.
    """

    _records: typing.Dict[Key, Record]
    _next_ids: typing.Dict[str, int]
    _lock: typing.ContextManager[bool]

    def _allocate(self, record: Record) -> Record:
        key = record.key
        if key is None:
            raise RecordStoreError("cannot store a record without a key")
        if key.complete:
            if isinstance(key.id, int) and key.id >= self._next_ids.get(key.kind, 1):
                self._next_ids[key.kind] = key.id + 1
            return record.with_key(key)
        id = self._next_ids.get(key.kind, 1)
        self._next_ids[key.kind] = id + 1
        return record.with_key(key.with_id(id))

    def _write(self, op: str, records: typing.Sequence[Record]) -> typing.List[Record]:
        stored = []
        with self._lock:
            for record in records:
                key = record.key
                if op == "insert" and key is not None and key in self._records:
                    raise RecordExistsError(key)
                if op == "update" and (key is None or key not in self._records):
                    raise RecordNotFoundError(typing.cast(Key, key))
            for record in records:
                record = self._allocate(record)
                self._records[typing.cast(Key, record.key)] = record
                stored.append(record.with_key(record.key))
        logger.debug("%s %d record(s)", op, len(stored))
        return stored

    def get(self, key: Key) -> typing.Optional[Record]:
        with self._lock:
            record = self._records.get(key)
        return record.with_key(key) if record is not None else None

    def get_many(self, keys: typing.Sequence[Key]) -> typing.Sequence[typing.Optional[Record]]:
        return [self.get(key) for key in keys]

    def insert(self, records: typing.Sequence[Record]) -> typing.Sequence[Record]:
        return self._write("insert", records)

    def update(self, records: typing.Sequence[Record]) -> typing.Sequence[Record]:
        return self._write("update", records)

    def upsert(self, records: typing.Sequence[Record]) -> typing.Sequence[Record]:
        return self._write("upsert", records)

    def delete(self, keys: typing.Sequence[Key]) -> None:
        with self._lock:
            for key in keys:
                self._records.pop(key, None)

    @contextlib.contextmanager
    def transaction(self) -> typing.Iterator[RecordStore]:
        with self._lock:
            txn = _InMemoryTransaction(self)
            yield txn
            txn.commit()

    def __len__(self) -> int:
        return len(self._records)

    def __init__(self):
        self._records = {}
        self._next_ids = {}
        self._lock = threading.RLock()


class _InMemoryTransaction(RecordStore):
    """
    Buffers writes and applies them to the underlying store on commit. Reads
    see the underlying store plus the writes buffered so far.
    """

    store: InMemoryRecordStore
    _ops: typing.List[typing.Tuple[str, typing.Any]]
    _pending: typing.Dict[Key, typing.Optional[Record]]

    def get(self, key: Key) -> typing.Optional[Record]:
        if key in self._pending:
            record = self._pending[key]
            return record.with_key(key) if record is not None else None
        return self.store.get(key)

    def get_many(self, keys: typing.Sequence[Key]) -> typing.Sequence[typing.Optional[Record]]:
        return [self.get(key) for key in keys]

    def _buffer(self, op: str, records: typing.Sequence[Record]) -> typing.Sequence[Record]:
        result = []
        with self.store._lock:
            for record in records:
                if record.key is not None and not record.key.complete:
                    # ids are allocated right away so that callers see them
                    record = self.store._allocate(record)
                result.append(record)
        self._ops.append((op, result))
        for record in result:
            self._pending[typing.cast(Key, record.key)] = record
        return [copy.deepcopy(record) for record in result]

    def insert(self, records: typing.Sequence[Record]) -> typing.Sequence[Record]:
        return self._buffer("insert", records)

    def update(self, records: typing.Sequence[Record]) -> typing.Sequence[Record]:
        return self._buffer("update", records)

    def upsert(self, records: typing.Sequence[Record]) -> typing.Sequence[Record]:
        return self._buffer("upsert", records)

    def delete(self, keys: typing.Sequence[Key]) -> None:
        self._ops.append(("delete", list(keys)))
        for key in keys:
            self._pending[key] = None

    @contextlib.contextmanager
    def transaction(self) -> typing.Iterator[RecordStore]:
        yield self

    def commit(self) -> None:
        store = self.store
        with store._lock:
            records, next_ids = dict(store._records), dict(store._next_ids)
            try:
                for op, payload in self._ops:
                    if op == "delete":
                        store.delete(payload)
                    else:
                        store._write(op, payload)
            except RecordStoreError:
                store._records, store._next_ids = records, next_ids
                raise
        self._ops = []
        self._pending = {}

    def __init__(self, store: InMemoryRecordStore):
        self.store = store
        self._ops = []
        self._pending = {}
