import contextlib
import json
import logging
import typing

import sqlalchemy as sa  # type: ignore

from ...exceptions import RecordExistsError, RecordNotFoundError, RecordStoreError
from ...interfaces import RecordStore
from ...records import Key, Record

logger = logging.getLogger(__name__)

NO_PARENT = ""


def encode_id(id: typing.Union[int, str]) -> str:
    return json.dumps(id)


def decode_id(encoded: str) -> typing.Union[int, str]:
    return json.loads(encoded)


def encode_path(key: typing.Optional[Key]) -> str:
    """
    Encodes the path of ``key`` as JSON so that parents can be compared as
    plain strings. ``None`` encodes as the empty string.
    """
    if key is None:
        return NO_PARENT
    return json.dumps([[kind, id] for kind, id in key.path])


def decode_path(encoded: str) -> typing.Optional[Key]:
    if encoded == NO_PARENT:
        return None
    key = None
    for kind, id in json.loads(encoded):
        key = Key(kind, id, key)
    return key


def build_tables(metadata: sa.MetaData, prefix: str = "") -> typing.Tuple[sa.Table, sa.Table]:
    records = sa.Table(
        f"{prefix}records",
        metadata,
        sa.Column("kind", sa.String(255), primary_key=True, nullable=False),
        sa.Column("parent", sa.String(1024), primary_key=True, nullable=False),
        sa.Column("name", sa.String(255), primary_key=True, nullable=False),
        sa.Column("properties", sa.PickleType(), nullable=False),
    )
    ids = sa.Table(
        f"{prefix}record_ids",
        metadata,
        sa.Column("kind", sa.String(255), primary_key=True, nullable=False),
        sa.Column("next_id", sa.Integer(), nullable=False),
    )
    return records, ids


class SQLARecordStore(RecordStore):
    """
    A record store over a relational database. Each record is a row keyed by
    kind, encoded parent path and encoded id, with its properties pickled.
    Integer ids are allocated per kind from a counter table.

    :param engine: the SQLAlchemy engine.
    :param metadata: the metadata the tables are registered with; a new one is
        created if omitted.
    :param str prefix: prepended to the table names.
    """

    engine: sa.engine.Engine
    metadata: sa.MetaData
    records: sa.Table
    ids: sa.Table
    _conn: typing.Optional[sa.engine.Connection] = None

    def create_all(self) -> None:
        self.metadata.create_all(bind=self.engine)

    @contextlib.contextmanager
    def _connection(self) -> typing.Iterator[sa.engine.Connection]:
        if self._conn is not None:
            yield self._conn
            return
        try:
            with self.engine.begin() as conn:
                yield conn
        except sa.exc.SQLAlchemyError as e:
            raise RecordStoreError(f"record store failure: {e}") from e

    def _where(self, key: Key) -> sa.sql.ClauseElement:
        return sa.and_(
            self.records.c.kind == key.kind,
            self.records.c.parent == encode_path(key.parent),
            self.records.c.name == encode_id(typing.cast(typing.Union[int, str], key.id)),
        )

    def _exists(self, conn: sa.engine.Connection, key: Key) -> bool:
        row = conn.execute(sa.select(self.records.c.kind).where(self._where(key))).first()
        return row is not None

    def _allocate(self, conn: sa.engine.Connection, kind: str) -> int:
        row = conn.execute(
            sa.select(self.ids.c.next_id).where(self.ids.c.kind == kind)
        ).first()
        if row is None:
            next_id = 1
            conn.execute(self.ids.insert().values(kind=kind, next_id=next_id + 1))
        else:
            next_id = row[0]
            conn.execute(
                self.ids.update().where(self.ids.c.kind == kind).values(next_id=next_id + 1)
            )
        return next_id

    def _complete(self, conn: sa.engine.Connection, record: Record) -> Record:
        key = record.key
        if key is None:
            raise RecordStoreError("cannot store a record without a key")
        if not key.complete:
            key = key.with_id(self._allocate(conn, key.kind))
            # skip ids that were written explicitly
            while self._exists(conn, key):
                key = key.with_id(self._allocate(conn, key.kind))
        return record.with_key(key)

    def _row(self, record: Record) -> typing.Dict[str, typing.Any]:
        key = typing.cast(Key, record.key)
        return {
            "kind": key.kind,
            "parent": encode_path(key.parent),
            "name": encode_id(typing.cast(typing.Union[int, str], key.id)),
            "properties": dict(record.properties),
        }

    def _write(self, op: str, records: typing.Sequence[Record]) -> typing.Sequence[Record]:
        stored = []
        with self._connection() as conn:
            for record in records:
                record = self._complete(conn, record)
                key = typing.cast(Key, record.key)
                exists = self._exists(conn, key)
                if op == "insert" and exists:
                    raise RecordExistsError(key)
                if op == "update" and not exists:
                    raise RecordNotFoundError(key)
                row = self._row(record)
                if exists:
                    conn.execute(
                        self.records.update()
                        .where(self._where(key))
                        .values(properties=row["properties"])
                    )
                else:
                    conn.execute(self.records.insert().values(**row))
                stored.append(record)
        logger.debug("%s %d record(s)", op, len(stored))
        return stored

    def get(self, key: Key) -> typing.Optional[Record]:
        if not key.complete:
            return None
        query = sa.select(self.records.c.properties).where(self._where(key))
        if self._conn is not None:
            # rows read inside a transaction stay locked until it ends
            query = query.with_for_update()
        with self._connection() as conn:
            row = conn.execute(query).first()
        if row is None:
            return None
        return Record(key, row[0])

    def get_many(self, keys: typing.Sequence[Key]) -> typing.Sequence[typing.Optional[Record]]:
        return [self.get(key) for key in keys]

    def insert(self, records: typing.Sequence[Record]) -> typing.Sequence[Record]:
        return self._write("insert", records)

    def update(self, records: typing.Sequence[Record]) -> typing.Sequence[Record]:
        return self._write("update", records)

    def upsert(self, records: typing.Sequence[Record]) -> typing.Sequence[Record]:
        return self._write("upsert", records)

    def delete(self, keys: typing.Sequence[Key]) -> None:
        with self._connection() as conn:
            for key in keys:
                if key.complete:
                    conn.execute(self.records.delete().where(self._where(key)))

    @contextlib.contextmanager
    def transaction(self) -> typing.Iterator[RecordStore]:
        if self._conn is not None:
            yield self
            return
        with self._connection() as conn:
            yield SQLARecordStore(self.engine, self.metadata, _tables=(self.records, self.ids), _conn=conn)

    def __init__(
        self,
        engine: sa.engine.Engine,
        metadata: typing.Optional[sa.MetaData] = None,
        prefix: str = "",
        _tables: typing.Optional[typing.Tuple[sa.Table, sa.Table]] = None,
        _conn: typing.Optional[sa.engine.Connection] = None,
    ):
        self.engine = engine
        self.metadata = metadata if metadata is not None else sa.MetaData()
        if _tables is None:
            _tables = build_tables(self.metadata, prefix)
        self.records, self.ids = _tables
        self._conn = _conn
