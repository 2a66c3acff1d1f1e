import abc
import collections.abc
import datetime
import decimal
import enum
import logging
import threading
import typing

from .declarative import is_embeddable
from .deferred import Deferred
from .exceptions import NoSuitableMapperError
from .records import NULL, Key, Record, Value, ValueType
from .utils.typing import is_union, unwrap_optional

logger = logging.getLogger(__name__)


class ValueMapper(metaclass=abc.ABCMeta):
    """
    Converts a single domain value into a store :py:class:`Value` and back.
    Implementations raise :py:class:`TypeError` or :py:class:`ValueError` on
    values they cannot handle; the caller attaches the field context.
    """

    @abc.abstractmethod
    def to_store(self, value: typing.Any) -> Value:
        ...  # pragma: nocover

    @abc.abstractmethod
    def to_domain(self, value: Value) -> typing.Any:
        ...  # pragma: nocover


class ScalarMapper(ValueMapper):
    value_type: typing.ClassVar[ValueType]
    domain_types: typing.ClassVar[typing.Tuple[type, ...]]

    def check(self, value: typing.Any) -> None:
        if not isinstance(value, self.domain_types):
            raise TypeError(
                f"{type(value).__name__} cannot be stored as {self.value_type.value}"
            )

    def encode(self, value: typing.Any) -> typing.Any:
        return value

    def decode(self, value: typing.Any) -> typing.Any:
        return value

    def to_store(self, value: typing.Any) -> Value:
        if value is None:
            return NULL
        self.check(value)
        return Value(self.value_type, self.encode(value))

    def to_domain(self, value: Value) -> typing.Any:
        if value.is_null:
            return None
        if value.type is not self.value_type:
            raise TypeError(f"expected a {self.value_type.value} value, got {value.type.value}")
        return self.decode(value.value)


class IntegerMapper(ScalarMapper):
    value_type = ValueType.INTEGER
    domain_types = (int,)

    def check(self, value: typing.Any) -> None:
        if isinstance(value, bool):
            raise TypeError("bool cannot be stored as integer")
        super().check(value)

    def encode(self, value: typing.Any) -> typing.Any:
        return int(value)


class FloatMapper(ScalarMapper):
    value_type = ValueType.DOUBLE
    domain_types = (float, int)

    def encode(self, value: typing.Any) -> typing.Any:
        return float(value)

    def to_domain(self, value: Value) -> typing.Any:
        if value.type is ValueType.INTEGER:
            return float(value.value)
        return super().to_domain(value)


class BooleanMapper(ScalarMapper):
    value_type = ValueType.BOOLEAN
    domain_types = (bool,)


class StringMapper(ScalarMapper):
    value_type = ValueType.STRING
    domain_types = (str,)


class BytesMapper(ScalarMapper):
    value_type = ValueType.BLOB
    domain_types = (bytes, bytearray, memoryview)

    def encode(self, value: typing.Any) -> typing.Any:
        return bytes(value)


class ByteArrayMapper(BytesMapper):
    def decode(self, value: typing.Any) -> typing.Any:
        return bytearray(value)


class DateTimeMapper(ScalarMapper):
    value_type = ValueType.TIMESTAMP
    domain_types = (datetime.datetime,)


class DateMapper(ScalarMapper):
    """
    Stores a date as its ISO 8601 string (``YYYY-MM-DD``).
    """

    value_type = ValueType.STRING
    domain_types = (datetime.date,)

    def check(self, value: typing.Any) -> None:
        if isinstance(value, datetime.datetime):
            raise TypeError("datetime cannot be stored as a date")
        super().check(value)

    def encode(self, value: typing.Any) -> typing.Any:
        return value.isoformat()

    def decode(self, value: typing.Any) -> typing.Any:
        return datetime.date.fromisoformat(value)


class TimeMapper(ScalarMapper):
    value_type = ValueType.STRING
    domain_types = (datetime.time,)

    def encode(self, value: typing.Any) -> typing.Any:
        return value.isoformat()

    def decode(self, value: typing.Any) -> typing.Any:
        return datetime.time.fromisoformat(value)


class DecimalMapper(ScalarMapper):
    value_type = ValueType.STRING
    domain_types = (decimal.Decimal, int)

    def encode(self, value: typing.Any) -> typing.Any:
        return str(decimal.Decimal(value))

    def decode(self, value: typing.Any) -> typing.Any:
        try:
            return decimal.Decimal(value)
        except decimal.InvalidOperation as e:
            raise ValueError(f"{value!r} is not a decimal") from e


class KeyMapper(ScalarMapper):
    value_type = ValueType.KEY
    domain_types = (Key,)


class EnumMapper(ScalarMapper):
    """
    Stores an enum member by its name.
    """

    value_type = ValueType.STRING
    enum_class: typing.Type[enum.Enum]

    def check(self, value: typing.Any) -> None:
        if not isinstance(value, self.enum_class):
            raise TypeError(f"{value!r} is not a member of {self.enum_class.__name__}")

    def encode(self, value: typing.Any) -> typing.Any:
        return value.name

    def decode(self, value: typing.Any) -> typing.Any:
        try:
            return self.enum_class[value]
        except KeyError:
            raise ValueError(f"{value} is not a valid name for the enum {self.enum_class.__name__}")

    def __init__(self, enum_class: typing.Type[enum.Enum]):
        self.enum_class = enum_class


class ListMapper(ValueMapper):
    item_mapper: ValueMapper
    factory: typing.Callable[[typing.Iterable[typing.Any]], typing.Any]

    def to_store(self, value: typing.Any) -> Value:
        if value is None:
            return NULL
        if isinstance(value, (str, bytes, collections.abc.Mapping)) or not isinstance(
            value, collections.abc.Iterable
        ):
            raise TypeError(f"{type(value).__name__} cannot be stored as a list")
        return Value(ValueType.LIST, [self.item_mapper.to_store(item) for item in value])

    def to_domain(self, value: Value) -> typing.Any:
        if value.is_null:
            return None
        if value.type is not ValueType.LIST:
            raise TypeError(f"expected a list value, got {value.type.value}")
        return self.factory(self.item_mapper.to_domain(item) for item in value.value)

    def __init__(
        self,
        item_mapper: ValueMapper,
        factory: typing.Callable[[typing.Iterable[typing.Any]], typing.Any] = list,
    ):
        self.item_mapper = item_mapper
        self.factory = factory


class MapMapper(ValueMapper):
    """
    Stores a mapping with string keys as a nested record.
    """

    value_mapper: ValueMapper

    def to_store(self, value: typing.Any) -> Value:
        if value is None:
            return NULL
        if not isinstance(value, collections.abc.Mapping):
            raise TypeError(f"{type(value).__name__} cannot be stored as a record")
        nested = Record()
        for k, v in value.items():
            if not isinstance(k, str):
                raise TypeError(f"record property names must be str, got {k!r}")
            nested[k] = self.value_mapper.to_store(v)
        return Value(ValueType.RECORD, nested)

    def to_domain(self, value: Value) -> typing.Any:
        if value.is_null:
            return None
        if value.type is not ValueType.RECORD:
            raise TypeError(f"expected a record value, got {value.type.value}")
        return {k: self.value_mapper.to_domain(v) for k, v in value.value.properties.items()}

    def __init__(self, value_mapper: ValueMapper):
        self.value_mapper = value_mapper


class DynamicMapper(ValueMapper):
    """
    Picks a mapper from the runtime type of each value. Used for ``Any`` and
    for unparameterized containers.
    """

    registry: "MapperRegistry"

    def to_store(self, value: typing.Any) -> Value:
        if value is None:
            return NULL
        return self.registry.get_mapper(type(value)).to_store(value)

    def to_domain(self, value: Value) -> typing.Any:
        if value.type is ValueType.LIST:
            return [self.to_domain(item) for item in value.value]
        elif value.type is ValueType.RECORD:
            return {k: self.to_domain(v) for k, v in value.value.properties.items()}
        return value.value

    def __init__(self, registry: "MapperRegistry"):
        self.registry = registry


class EmbeddableMapper(ValueMapper):
    """
    Stores an embeddable object as a nested record. The embeddable's descriptor
    is resolved lazily so that a type may hold a collection of itself.
    """

    class_: type
    _descr: Deferred["models.EmbeddableDescriptor"]

    @property
    def descr(self) -> "models.EmbeddableDescriptor":
        return self._descr()

    def to_store(self, value: typing.Any) -> Value:
        from .marshaller import marshal_embeddable

        if value is None:
            return NULL
        if not isinstance(value, self.class_):
            raise TypeError(f"{type(value).__name__} is not a {self.class_.__name__}")
        return Value(ValueType.RECORD, marshal_embeddable(self.descr, value))

    def to_domain(self, value: Value) -> typing.Any:
        from .unmarshaller import unmarshal_embeddable

        if value.is_null:
            return None
        if value.type is not ValueType.RECORD:
            raise TypeError(f"expected a record value, got {value.type.value}")
        return unmarshal_embeddable(self.descr, value.value)

    def __init__(
        self,
        class_: type,
        resolver: typing.Callable[[type], "models.EmbeddableDescriptor"],
    ):
        self.class_ = class_
        self._descr = Deferred(resolver, class_)


EmbeddableResolver = typing.Callable[[type], "models.EmbeddableDescriptor"]

_LIST_FACTORIES: typing.Mapping[typing.Any, typing.Callable[[typing.Iterable], typing.Any]] = {
    list: list,
    tuple: tuple,
    set: set,
    frozenset: frozenset,
    collections.abc.Iterable: list,
    collections.abc.Collection: list,
    collections.abc.Sequence: list,
    collections.abc.MutableSequence: list,
    collections.abc.Set: set,
    collections.abc.MutableSet: set,
}

_MAP_TYPES = (dict, collections.abc.Mapping, collections.abc.MutableMapping)


class MapperRegistry:
    """
    Resolves a :py:class:`ValueMapper` for a declared field type.

    Exact registrations win; otherwise ``Optional[T]`` is unwrapped, list-like
    and mapping generics are composed from their item mappers, enums and
    embeddable types get a dedicated mapper, and finally the class's ancestors
    are looked up. Mappers that do not depend on an embeddable resolver are
    cached.
    """

    _mappers: typing.Dict[typing.Any, ValueMapper]
    _lock: typing.ContextManager[bool]

    def register(self, type_: typing.Any, mapper: ValueMapper) -> None:
        with self._lock:
            self._mappers[type_] = mapper

    def get_mapper(
        self, type_: typing.Any, embeddable_resolver: typing.Optional[EmbeddableResolver] = None
    ) -> ValueMapper:
        mapper = self._mappers.get(type_)
        if mapper is not None:
            return mapper
        with self._lock:
            mapper = self._mappers.get(type_)
            if mapper is None:
                mapper, cacheable = self._build(type_, embeddable_resolver)
                if cacheable:
                    logger.debug("created value mapper %r for %r", mapper, type_)
                    self._mappers[type_] = mapper
        return mapper

    def _build(
        self, type_: typing.Any, resolver: typing.Optional[EmbeddableResolver]
    ) -> typing.Tuple[ValueMapper, bool]:
        mapper = self._mappers.get(type_)
        if mapper is not None:
            return mapper, True

        if type_ is typing.Any or type_ is object:
            return DynamicMapper(self), True

        inner, optional = unwrap_optional(type_)
        if optional:
            return self._build(inner, resolver)
        if is_union(type_):
            raise NoSuitableMapperError(type_)

        origin = typing.get_origin(type_)
        args = typing.get_args(type_)
        container = origin if origin is not None else type_

        if container in _LIST_FACTORIES:
            if container is tuple and args and not (len(args) == 2 and args[1] is Ellipsis):
                raise NoSuitableMapperError(type_)
            if args:
                item_mapper, cacheable = self._build(args[0], resolver)
            else:
                item_mapper, cacheable = DynamicMapper(self), True
            return ListMapper(item_mapper, _LIST_FACTORIES[container]), cacheable

        if container in _MAP_TYPES:
            if args:
                if args[0] is not str:
                    raise NoSuitableMapperError(type_)
                value_mapper, cacheable = self._build(args[1], resolver)
            else:
                value_mapper, cacheable = DynamicMapper(self), True
            return MapMapper(value_mapper), cacheable

        if not isinstance(type_, type):
            raise NoSuitableMapperError(type_)

        if issubclass(type_, enum.Enum):
            return EnumMapper(type_), True

        if resolver is not None and is_embeddable(type_):
            return EmbeddableMapper(type_, resolver), False

        for base in type_.__mro__[1:]:
            mapper = self._mappers.get(base)
            if mapper is not None:
                return mapper, True

        raise NoSuitableMapperError(type_)

    def __init__(self, mappers: typing.Optional[typing.Mapping[typing.Any, ValueMapper]] = None):
        self._lock = threading.RLock()
        self._mappers = {
            int: IntegerMapper(),
            float: FloatMapper(),
            bool: BooleanMapper(),
            str: StringMapper(),
            bytes: BytesMapper(),
            bytearray: ByteArrayMapper(),
            datetime.datetime: DateTimeMapper(),
            datetime.date: DateMapper(),
            datetime.time: TimeMapper(),
            decimal.Decimal: DecimalMapper(),
            Key: KeyMapper(),
        }
        if mappers is not None:
            self._mappers.update(mappers)


if typing.TYPE_CHECKING:
    from . import models  # noqa: E402
