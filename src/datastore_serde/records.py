import copy
import dataclasses
import enum
import typing
from collections import OrderedDict

IdType = typing.Union[int, str]


class ValueType(enum.Enum):
    NULL = "null"
    INTEGER = "integer"
    DOUBLE = "double"
    STRING = "string"
    BOOLEAN = "boolean"
    TIMESTAMP = "timestamp"
    BLOB = "blob"
    KEY = "key"
    LIST = "list"
    RECORD = "record"


@dataclasses.dataclass(frozen=True)
class Key:
    """
    Identifies a record in the store. A key without an ``id`` is incomplete;
    the store allocates one when the record is written.
    """

    kind: str
    id: typing.Optional[IdType] = None
    parent: typing.Optional["Key"] = None

    @property
    def complete(self) -> bool:
        return self.id is not None

    @property
    def path(self) -> typing.Tuple[typing.Tuple[str, typing.Optional[IdType]], ...]:
        prefix = self.parent.path if self.parent is not None else ()
        return prefix + ((self.kind, self.id),)

    def with_id(self, id: IdType) -> "Key":
        return dataclasses.replace(self, id=id)

    def __str__(self) -> str:
        return "/".join(f"{kind}:{id!r}" for kind, id in self.path)


@dataclasses.dataclass(frozen=True)
class Value:
    type: ValueType
    value: typing.Any = None
    indexed: bool = True

    @property
    def is_null(self) -> bool:
        return self.type is ValueType.NULL

    def indexed_as(self, indexed: bool) -> "Value":
        if indexed == self.indexed:
            return self
        return dataclasses.replace(self, indexed=indexed)

    @classmethod
    def null(cls, indexed: bool = True) -> "Value":
        return cls(ValueType.NULL, None, indexed)


NULL = Value(ValueType.NULL)


class Record:
    """
    A schema-less, ordered bag of named :py:class:`Value` s, optionally
    identified by a :py:class:`Key`. Records nested as ``RECORD`` values carry
    no key.
    """

    key: typing.Optional[Key]
    _properties: "OrderedDict[str, Value]"

    @property
    def properties(self) -> typing.Mapping[str, Value]:
        return self._properties

    def names(self) -> typing.KeysView[str]:
        return self._properties.keys()

    def get(self, name: str, default: typing.Optional[Value] = None) -> typing.Optional[Value]:
        return self._properties.get(name, default)

    def set(self, name: str, value: Value) -> None:
        if not isinstance(value, Value):
            raise TypeError(f"expected a Value, got {type(value).__name__}")
        self._properties[name] = value

    def with_key(self, key: typing.Optional[Key]) -> "Record":
        return Record(key, copy.deepcopy(self._properties))

    def __contains__(self, name: object) -> bool:
        return name in self._properties

    def __getitem__(self, name: str) -> Value:
        return self._properties[name]

    def __setitem__(self, name: str, value: Value) -> None:
        self.set(name, value)

    def __len__(self) -> int:
        return len(self._properties)

    def __iter__(self) -> typing.Iterator[str]:
        return iter(self._properties)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Record):
            return NotImplemented
        return self.key == other.key and dict(self._properties) == dict(other._properties)

    def __repr__(self) -> str:
        props = ", ".join(f"{k}={v!r}" for k, v in self._properties.items())
        return f"{type(self).__name__}(key={self.key!r}, {props})"

    def __init__(
        self,
        key: typing.Optional[Key] = None,
        properties: typing.Optional[typing.Mapping[str, Value]] = None,
    ):
        self.key = key
        self._properties = OrderedDict()
        if properties is not None:
            for name, value in properties.items():
                self.set(name, value)
