import dataclasses
import inspect
import typing
from collections import OrderedDict

from .declarative import Nesting, Property
from .interfaces import FieldAccessor
from .listeners import NO_LISTENERS, EntityListeners
from .mappers import ValueMapper
from .records import IdType, Value
from .utils.types import maybe_unspecified


class AttributeAccessor(FieldAccessor):
    _name: str

    @property
    def name(self) -> str:
        return self._name

    def get(self, target: typing.Any) -> typing.Any:
        return getattr(target, self._name)

    def set(self, target: typing.Any, value: typing.Any) -> None:
        setattr(target, self._name, value)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._name!r})"

    def __init__(self, name: str):
        self._name = name


class FieldDescriptor:
    name: str
    type: typing.Any
    accessor: FieldAccessor
    declaring_class: type

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.declaring_class.__qualname__}.{self.name})"

    def __init__(
        self,
        name: str,
        type: typing.Any,
        declaring_class: type,
        accessor: typing.Optional[FieldAccessor] = None,
    ):
        self.name = name
        self.type = type
        self.declaring_class = declaring_class
        self.accessor = accessor if accessor is not None else AttributeAccessor(name)


class PropertyDescriptor(FieldDescriptor):
    marker: Property
    mapped_name: str
    indexed: bool
    optional: bool
    mapper: ValueMapper

    def to_store(self, value: typing.Any) -> Value:
        return self.mapper.to_store(value).indexed_as(self.indexed)

    def to_domain(self, value: Value) -> typing.Any:
        return self.mapper.to_domain(value)

    def resolved(
        self, mapped_name: str, override: typing.Optional[Property] = None
    ) -> "PropertyDescriptor":
        """
        Returns a copy of this descriptor stored under ``mapped_name``, with the
        options specified by ``override`` applied on top.
        """
        marker = self.marker
        if override is not None:
            marker = marker.merged(override)
            mapped_name = maybe_unspecified(override.name, mapped_name)
        return PropertyDescriptor(
            name=self.name,
            type=self.type,
            declaring_class=self.declaring_class,
            accessor=self.accessor,
            marker=marker,
            mapped_name=mapped_name,
            mapper=self.mapper,
        )

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}({self.declaring_class.__qualname__}.{self.name} "
            f"-> {self.mapped_name!r})"
        )

    def __init__(
        self,
        name: str,
        type: typing.Any,
        declaring_class: type,
        marker: Property,
        mapper: ValueMapper,
        mapped_name: typing.Optional[str] = None,
        accessor: typing.Optional[FieldAccessor] = None,
    ):
        super().__init__(name, type, declaring_class, accessor)
        self.marker = marker
        self.mapper = mapper
        self.mapped_name = (
            mapped_name if mapped_name is not None else maybe_unspecified(marker.name, name)
        )
        self.indexed = maybe_unspecified(marker.indexed, True)
        self.optional = maybe_unspecified(marker.optional, False)


class IdentifierDescriptor(FieldDescriptor):
    """
    Describes the identifier field. Its type is either ``int``, ``str``, or a
    wrapper class holding one of them in ``wrapped_attribute`` and constructed
    with that primitive as its only argument.
    """

    auto_generated: bool
    id_type: typing.Type[IdType]
    wrapper_class: typing.Optional[type]
    wrapped_attribute: typing.Optional[str]

    def unwrap(self, value: typing.Any) -> typing.Optional[IdType]:
        if value is None:
            return None
        if self.wrapper_class is not None:
            value = getattr(value, typing.cast(str, self.wrapped_attribute))
        if value is None or (self.id_type is int and value == 0):
            return None
        if not isinstance(value, self.id_type) or isinstance(value, bool):
            raise TypeError(f"identifier must be {self.id_type.__name__}, got {value!r}")
        return value

    def wrap(self, id: typing.Optional[IdType]) -> typing.Any:
        if id is None:
            return None
        if not isinstance(id, self.id_type):
            raise TypeError(f"identifier must be {self.id_type.__name__}, got {id!r}")
        if self.wrapper_class is not None:
            return self.wrapper_class(id)
        return id

    def __init__(
        self,
        name: str,
        type: typing.Any,
        declaring_class: type,
        auto_generated: bool,
        id_type: typing.Type[IdType],
        wrapper_class: typing.Optional[type] = None,
        wrapped_attribute: typing.Optional[str] = None,
        accessor: typing.Optional[FieldAccessor] = None,
    ):
        super().__init__(name, type, declaring_class, accessor)
        self.auto_generated = auto_generated
        self.id_type = id_type
        self.wrapper_class = wrapper_class
        self.wrapped_attribute = wrapped_attribute


class KeyDescriptor(FieldDescriptor):
    pass


@dataclasses.dataclass(frozen=True)
class ConstructorParameter:
    name: str
    kind: inspect._ParameterKind
    field_name: typing.Optional[str]

    @property
    def positional_only(self) -> bool:
        return self.kind is inspect.Parameter.POSITIONAL_ONLY


class ConstructorDescriptor:
    function: typing.Callable[..., typing.Any]
    parameters: typing.Sequence[ConstructorParameter]

    @property
    def arity(self) -> int:
        return len(self.parameters)

    @property
    def unbound(self) -> bool:
        return any(p.field_name is None for p in self.parameters)

    @property
    def field_names(self) -> typing.FrozenSet[str]:
        return frozenset(p.field_name for p in self.parameters if p.field_name is not None)

    def invoke(self, values: typing.Mapping[str, typing.Any]) -> typing.Any:
        args: typing.List[typing.Any] = []
        kwargs: typing.Dict[str, typing.Any] = {}
        for param in self.parameters:
            value = values[typing.cast(str, param.field_name)]
            if param.positional_only:
                args.append(value)
            else:
                kwargs[param.name] = value
        return self.function(*args, **kwargs)

    def __repr__(self) -> str:
        params = ", ".join(f"{p.name}={p.field_name}" for p in self.parameters)
        return f"{type(self).__name__}({getattr(self.function, '__qualname__', self.function)}({params}))"

    def __init__(
        self,
        function: typing.Callable[..., typing.Any],
        parameters: typing.Sequence[ConstructorParameter],
    ):
        self.function = function
        self.parameters = tuple(parameters)


class TypeDescriptor:
    """
    What entity and embeddable descriptors share: the class, its directly
    declared properties and how instances are constructed.
    """

    class_: type
    properties: typing.Mapping[str, PropertyDescriptor]
    immutable: bool
    constructors: typing.Sequence[ConstructorDescriptor]

    def new_instance(self) -> typing.Any:
        return self.class_()

    def __init__(
        self,
        class_: type,
        properties: typing.Mapping[str, PropertyDescriptor],
        immutable: bool = False,
        constructors: typing.Sequence[ConstructorDescriptor] = (),
    ):
        self.class_ = class_
        self.properties = properties
        self.immutable = immutable
        self.constructors = tuple(constructors)


@dataclasses.dataclass(frozen=True)
class NestedEmbedding:
    """
    An embedded field declared inside an embeddable type, before it is placed
    at a concrete site.
    """

    field: FieldDescriptor
    nesting: Nesting
    mapped_name: str
    indexed: bool
    optional: bool
    embeddable: "EmbeddableDescriptor"


class EmbeddableDescriptor(TypeDescriptor):
    """
    Describes an embeddable type once, independently of where it is embedded.
    Property names here are local to the type.
    """

    nested: typing.Sequence[NestedEmbedding]
    override_kind: typing.Optional[str]
    standalone: typing.Optional["EmbeddedDescriptor"] = None

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.class_.__qualname__})"

    def __init__(
        self,
        class_: type,
        properties: typing.Mapping[str, PropertyDescriptor],
        nested: typing.Sequence[NestedEmbedding] = (),
        immutable: bool = False,
        constructors: typing.Sequence[ConstructorDescriptor] = (),
        override_kind: typing.Optional[str] = None,
    ):
        super().__init__(class_, properties, immutable, constructors)
        self.nested = tuple(nested)
        self.override_kind = override_kind


class EmbeddedDescriptor:
    """
    One embedding site: an embeddable type placed at ``path`` with the property
    names it uses there.

    For :py:attr:`Nesting.IMPLODED`, ``mapped_name`` names the nested record and
    the property names are local to it. For :py:attr:`Nesting.EXPLODED`, the
    property names are dotted paths in the enclosing record.
    """

    field: typing.Optional[FieldDescriptor]
    path: str
    mapped_name: str
    nesting: Nesting
    indexed: bool
    optional: bool
    embeddable: EmbeddableDescriptor
    properties: typing.Sequence[PropertyDescriptor]
    embedded: typing.Sequence["EmbeddedDescriptor"]

    @property
    def name(self) -> str:
        return self.field.name if self.field is not None else ""

    @property
    def accessor(self) -> FieldAccessor:
        assert self.field is not None
        return self.field.accessor

    @property
    def imploded(self) -> bool:
        return self.nesting is Nesting.IMPLODED

    def leaf_names(self) -> typing.Iterator[str]:
        """
        Yields the names this site occupies in its enclosing record.
        """
        if self.imploded:
            yield self.mapped_name
            return
        for prop in self.properties:
            yield prop.mapped_name
        for child in self.embedded:
            yield from child.leaf_names()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.path or self.embeddable.class_.__qualname__}, {self.nesting.name})"

    def __init__(
        self,
        field: typing.Optional[FieldDescriptor],
        path: str,
        mapped_name: str,
        nesting: Nesting,
        embeddable: EmbeddableDescriptor,
        properties: typing.Sequence[PropertyDescriptor],
        embedded: typing.Sequence["EmbeddedDescriptor"],
        indexed: bool = True,
        optional: bool = False,
    ):
        self.field = field
        self.path = path
        self.mapped_name = mapped_name
        self.nesting = nesting
        self.embeddable = embeddable
        self.properties = tuple(properties)
        self.embedded = tuple(embedded)
        self.indexed = indexed
        self.optional = optional


class EntityDescriptor(TypeDescriptor):
    type_ref: typing.Any
    kind: str
    projected: bool
    identifier: IdentifierDescriptor
    key: typing.Optional[KeyDescriptor]
    parent_key: typing.Optional[KeyDescriptor]
    embedded: typing.Sequence[EmbeddedDescriptor]
    version: typing.Optional[PropertyDescriptor]
    created_timestamp: typing.Optional[PropertyDescriptor]
    updated_timestamp: typing.Optional[PropertyDescriptor]
    property_overrides: typing.Mapping[str, Property]
    generic_bindings: typing.Mapping[typing.Any, typing.Any]
    listeners: EntityListeners

    def record_names(self) -> typing.Iterator[str]:
        """
        Yields every name this entity occupies in its record, exploded leaves
        included.
        """
        yield from self.properties.keys()
        for site in self.embedded:
            yield from site.leaf_names()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.type_ref!r}, kind={self.kind!r})"

    def __init__(
        self,
        type_ref: typing.Any,
        class_: type,
        kind: str,
        identifier: IdentifierDescriptor,
        properties: "OrderedDict[str, PropertyDescriptor]",
        embedded: typing.Sequence[EmbeddedDescriptor] = (),
        key: typing.Optional[KeyDescriptor] = None,
        parent_key: typing.Optional[KeyDescriptor] = None,
        version: typing.Optional[PropertyDescriptor] = None,
        created_timestamp: typing.Optional[PropertyDescriptor] = None,
        updated_timestamp: typing.Optional[PropertyDescriptor] = None,
        immutable: bool = False,
        constructors: typing.Sequence[ConstructorDescriptor] = (),
        projected: bool = False,
        property_overrides: typing.Optional[typing.Mapping[str, Property]] = None,
        generic_bindings: typing.Optional[typing.Mapping[typing.Any, typing.Any]] = None,
        listeners: EntityListeners = NO_LISTENERS,
    ):
        super().__init__(class_, properties, immutable, constructors)
        self.type_ref = type_ref
        self.kind = kind
        self.identifier = identifier
        self.embedded = tuple(embedded)
        self.key = key
        self.parent_key = parent_key
        self.version = version
        self.created_timestamp = created_timestamp
        self.updated_timestamp = updated_timestamp
        self.projected = projected
        self.property_overrides = property_overrides if property_overrides is not None else {}
        self.generic_bindings = generic_bindings if generic_bindings is not None else {}
        self.listeners = listeners
