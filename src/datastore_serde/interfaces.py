import abc
import typing

from .records import Key, Record


class FieldAccessor(metaclass=abc.ABCMeta):
    """
    Reads and writes one field of a domain object.
    """

    @property
    @abc.abstractmethod
    def name(self) -> str:
        ...  # pragma: nocover

    @abc.abstractmethod
    def get(self, target: typing.Any) -> typing.Any:
        ...  # pragma: nocover

    @abc.abstractmethod
    def set(self, target: typing.Any, value: typing.Any) -> None:
        ...  # pragma: nocover


class RecordStore(metaclass=abc.ABCMeta):
    """
    The boundary to a key/value record store. Writes take and return whole
    records; ``insert``, ``update`` and ``upsert`` return the records as
    stored, with ids allocated for incomplete keys.
    """

    @abc.abstractmethod
    def get(self, key: Key) -> typing.Optional[Record]:
        ...  # pragma: nocover

    @abc.abstractmethod
    def get_many(self, keys: typing.Sequence[Key]) -> typing.Sequence[typing.Optional[Record]]:
        ...  # pragma: nocover

    @abc.abstractmethod
    def insert(self, records: typing.Sequence[Record]) -> typing.Sequence[Record]:
        """
        Writes new records. Fails with :py:class:`RecordExistsError` if a
        complete key is already taken.
        """
        ...  # pragma: nocover

    @abc.abstractmethod
    def update(self, records: typing.Sequence[Record]) -> typing.Sequence[Record]:
        """
        Replaces existing records. Fails with :py:class:`RecordNotFoundError`
        if a key is unknown.
        """
        ...  # pragma: nocover

    @abc.abstractmethod
    def upsert(self, records: typing.Sequence[Record]) -> typing.Sequence[Record]:
        ...  # pragma: nocover

    @abc.abstractmethod
    def delete(self, keys: typing.Sequence[Key]) -> None:
        ...  # pragma: nocover

    @abc.abstractmethod
    def transaction(self) -> typing.ContextManager["RecordStore"]:
        """
        Returns a context manager yielding a view of this store. The view's
        writes are applied together when the block exits normally and are
        discarded when it raises.
        """
        ...  # pragma: nocover
