import bisect
import dataclasses
import datetime
import inspect
import logging
import typing
from collections import OrderedDict

from .cache import DescriptorCache
from .declarative import (
    Constructor,
    CreatedTimestamp,
    Embeddable,
    Embedded,
    Entity,
    FieldDeclaration,
    Identifier,
    MappedSuperclass,
    Meta,
    Nesting,
    ProjectedEntity,
    Property,
    Role,
    UpdatedTimestamp,
    Version,
    classify,
    meta_of,
)
from .exceptions import InvalidDeclarationError, NoSuitableMapperError
from .listeners import CallbackType, EntityListeners, ListenerBinding
from .mappers import MapperRegistry
from .models import (
    ConstructorDescriptor,
    ConstructorParameter,
    EmbeddableDescriptor,
    EmbeddedDescriptor,
    EntityDescriptor,
    FieldDescriptor,
    IdentifierDescriptor,
    KeyDescriptor,
    NestedEmbedding,
    PropertyDescriptor,
)
from .records import Key
from .utils.types import maybe_unspecified
from .utils.typing import (
    contains_type_var,
    qualified_name,
    raw_class,
    substitute_type_vars,
    unwrap_optional,
)

logger = logging.getLogger(__name__)

VALID_TIMESTAMP_TYPES: typing.Sequence[str] = sorted(
    qualified_name(type_) for type_ in (int, datetime.datetime)
)


def is_valid_timestamp_type(type_: typing.Any) -> bool:
    name = qualified_name(type_)
    i = bisect.bisect_left(VALID_TIMESTAMP_TYPES, name)
    return i < len(VALID_TIMESTAMP_TYPES) and VALID_TIMESTAMP_TYPES[i] == name


@dataclasses.dataclass(frozen=True)
class _Field:
    name: str
    type: typing.Any
    declaring_class: type
    declaration: typing.Optional[FieldDeclaration]
    inherited: bool

    def describe(self) -> str:
        return f"{self.declaring_class.__qualname__}.{self.name}"


@dataclasses.dataclass(frozen=True)
class _EmbeddableKey:
    class_: type


def _own_meta(class_: type) -> Meta:
    return meta_of(class_) if "Meta" in vars(class_) else Meta()


def _hierarchy(class_: type) -> typing.List[typing.Tuple[type, Meta]]:
    """
    Returns ``class_`` followed by its mapped superclasses, most-derived first,
    stopping at the first ancestor that is not one.
    """
    chain = [(class_, _own_meta(class_))]
    for base in class_.__mro__[1:]:
        meta = _own_meta(base)
        if not isinstance(meta.stereotype, MappedSuperclass):
            break
        chain.append((base, meta))
    return chain


def _bind_type_vars(
    chain: typing.Sequence[typing.Tuple[type, Meta]],
    bindings: typing.Dict[typing.Any, typing.Any],
) -> typing.Dict[typing.Any, typing.Any]:
    for class_, _ in chain:
        for base in vars(class_).get("__orig_bases__", ()):
            origin = typing.get_origin(base)
            params = getattr(origin, "__parameters__", ())
            args = typing.get_args(base)
            if params and len(params) == len(args):
                for param, arg in zip(params, args):
                    bindings.setdefault(param, substitute_type_vars(arg, bindings))
    return bindings


def _collect_fields(
    chain: typing.Sequence[typing.Tuple[type, Meta]],
    bindings: typing.Mapping[typing.Any, typing.Any],
) -> typing.List[_Field]:
    fields: typing.List[_Field] = []
    seen: typing.Set[str] = set()
    for i, (class_, meta) in enumerate(chain):
        annotations = inspect.get_annotations(class_)
        try:
            hints = typing.get_type_hints(class_)
        except (NameError, TypeError) as e:
            raise InvalidDeclarationError(
                f"cannot resolve the annotations of {class_.__qualname__}: {e}"
            ) from e
        unknown = set(meta.fields) - set(annotations)
        if unknown:
            raise InvalidDeclarationError(
                f"{class_.__qualname__} declares options for unknown field(s): {', '.join(sorted(unknown))}"
            )
        for name in annotations:
            if name.startswith("_") or name in seen:
                continue
            hint = hints.get(name, annotations[name])
            if hint is typing.ClassVar or typing.get_origin(hint) is typing.ClassVar:
                continue
            seen.add(name)
            fields.append(
                _Field(
                    name=name,
                    type=substitute_type_vars(hint, bindings),
                    declaring_class=class_,
                    declaration=meta.fields.get(name),
                    inherited=i > 0,
                )
            )
    return fields


def _unbound_fallback(type_: typing.Any) -> typing.Any:
    """
    Replaces type variables left without a binding by their bound, or ``Any``.
    """
    fallback: typing.Dict[typing.Any, typing.Any] = {}

    def _collect(t: typing.Any) -> None:
        if isinstance(t, typing.TypeVar):
            fallback[t] = t.__bound__ if t.__bound__ is not None else typing.Any
        for arg in typing.get_args(t):
            _collect(arg)

    _collect(type_)
    return substitute_type_vars(type_, fallback)


def _describe_constructor(class_: type, constructor: Constructor) -> ConstructorDescriptor:
    function = constructor.function
    if function is None:
        function = class_
    elif isinstance(function, str):
        name = function
        function = getattr(class_, name, None)
        if function is None or not callable(function):
            raise InvalidDeclarationError(
                f"{class_.__qualname__} has no callable named {name} to use as a constructor"
            )
    try:
        signature = inspect.signature(function)
    except (TypeError, ValueError) as e:
        raise InvalidDeclarationError(
            f"cannot inspect the constructor {function!r} of {class_.__qualname__}"
        ) from e

    bindings = dict(constructor.bindings or {})
    parameters = []
    for param in signature.parameters.values():
        field_name: typing.Optional[str]
        if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
            field_name = None
        elif param.name in bindings:
            field_name = bindings.pop(param.name)
        elif param.kind is inspect.Parameter.POSITIONAL_ONLY:
            field_name = None
        else:
            field_name = param.name
        parameters.append(ConstructorParameter(param.name, param.kind, field_name))
    if bindings:
        raise InvalidDeclarationError(
            f"constructor bindings of {class_.__qualname__} name unknown parameter(s): {', '.join(sorted(bindings))}"
        )
    return ConstructorDescriptor(function, parameters)


def _describe_construction(
    class_: type, meta: Meta
) -> typing.Tuple[bool, typing.List[ConstructorDescriptor]]:
    params = getattr(class_, "__dataclass_params__", None)
    frozen = params is not None and params.frozen
    declared = list(meta.constructors)
    if not declared and not frozen:
        try:
            signature = inspect.signature(class_)
        except (TypeError, ValueError):
            return False, []
        required = [
            p.name
            for p in signature.parameters.values()
            if p.default is inspect.Parameter.empty
            and p.kind not in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD)
        ]
        if required:
            raise InvalidDeclarationError(
                f"{class_.__qualname__} must be constructible without arguments, or declare its constructors (required: {', '.join(required)})"
            )
        return False, []
    if not declared:
        declared = [Constructor()]
    return True, [_describe_constructor(class_, c) for c in declared]


def _place(
    embeddable: EmbeddableDescriptor,
    field: typing.Optional[FieldDescriptor],
    path: str,
    mapped_name: str,
    nesting: Nesting,
    indexed: bool,
    optional: bool,
    record_prefix: str,
    overrides: typing.Mapping[str, Property],
    applied: typing.Set[str],
) -> EmbeddedDescriptor:
    """
    Places an embeddable type at a site, computing the names its properties take
    there. ``record_prefix`` is the dotted prefix of the enclosing record, which
    is non-empty only inside exploded sites.
    """
    qualified = f"{record_prefix}.{mapped_name}" if record_prefix else mapped_name
    inner_prefix = qualified if nesting is Nesting.EXPLODED else ""

    def _join(prefix: str, name: str) -> str:
        return f"{prefix}.{name}" if prefix else name

    properties = []
    for prop in embeddable.properties.values():
        prop_path = _join(path, prop.name)
        override = overrides.get(prop_path)
        if override is not None:
            applied.add(prop_path)
        properties.append(prop.resolved(_join(inner_prefix, prop.mapped_name), override))

    children = [
        _place(
            nested.embeddable,
            nested.field,
            _join(path, nested.field.name),
            nested.mapped_name,
            nested.nesting,
            nested.indexed,
            nested.optional,
            inner_prefix,
            overrides,
            applied,
        )
        for nested in embeddable.nested
    ]
    return EmbeddedDescriptor(
        field=field,
        path=path,
        mapped_name=qualified,
        nesting=nesting,
        embeddable=embeddable,
        properties=properties,
        embedded=children,
        indexed=indexed,
        optional=optional,
    )


def _ensure_unique_names(
    owner: str,
    properties: typing.Iterable[PropertyDescriptor],
    sites: typing.Sequence[EmbeddedDescriptor],
) -> None:
    seen: typing.Set[str] = set()
    names = [prop.mapped_name for prop in properties]
    for site in sites:
        names.extend(site.leaf_names())
    for name in names:
        if name in seen:
            raise InvalidDeclarationError(f"duplicate property name {name!r} in {owner}")
        seen.add(name)
    for site in _nested_records(sites):
        _ensure_unique_names(f"{owner} ({site.mapped_name})", site.properties, site.embedded)


def _nested_records(
    sites: typing.Sequence[EmbeddedDescriptor],
) -> typing.Iterator[EmbeddedDescriptor]:
    for site in sites:
        if site.imploded:
            yield site
        else:
            yield from _nested_records(site.embedded)


class _Introspection:
    introspector: "TypeIntrospector"
    class_: type

    def describe_property(self, field: _Field, marker: Property) -> PropertyDescriptor:
        type_ = field.type
        if contains_type_var(type_):
            type_ = _unbound_fallback(type_)
        try:
            mapper = self.introspector.registry.get_mapper(
                type_, self.introspector.introspect_embeddable
            )
        except NoSuitableMapperError as e:
            raise NoSuitableMapperError(e.type_, self.class_, field.name) from e
        return PropertyDescriptor(
            name=field.name,
            type=type_,
            declaring_class=field.declaring_class,
            marker=marker,
            mapper=mapper,
        )

    def describe_nested(self, field: _Field, marker: Embedded) -> NestedEmbedding:
        type_, _ = unwrap_optional(field.type)
        if isinstance(type_, typing.TypeVar):
            raise InvalidDeclarationError(
                f"cannot resolve the type variable {type_} of embedded field {field.describe()}"
            )
        if not isinstance(type_, type):
            raise InvalidDeclarationError(
                f"embedded field {field.describe()} must be annotated with a class, got {type_!r}"
            )
        return NestedEmbedding(
            field=FieldDescriptor(field.name, type_, field.declaring_class),
            nesting=marker.nesting,
            mapped_name=maybe_unspecified(marker.name, field.name),
            indexed=maybe_unspecified(marker.indexed, True),
            optional=maybe_unspecified(marker.optional, False),
            embeddable=self.introspector.introspect_embeddable(type_),
        )

    def __init__(self, introspector: "TypeIntrospector", class_: type):
        self.introspector = introspector
        self.class_ = class_


class _EmbeddableIntrospection(_Introspection):
    def process(self) -> EmbeddableDescriptor:
        chain = _hierarchy(self.class_)
        meta = chain[0][1]
        if meta.override_kind is not None and not isinstance(meta.stereotype, Embeddable):
            raise InvalidDeclarationError(
                f"{self.class_.__qualname__} overrides the kind but is not an embeddable"
            )

        properties: "OrderedDict[str, PropertyDescriptor]" = OrderedDict()
        nested: typing.List[NestedEmbedding] = []
        for field in _collect_fields(chain, _bind_type_vars(chain, {})):
            marker = classify(field.declaration) if field.declaration is not None else Property()
            if marker.role is Role.IGNORED:
                continue
            elif marker.role is Role.EMBEDDED:
                nested.append(self.describe_nested(field, typing.cast(Embedded, marker)))
            elif marker.role is Role.PROPERTY and type(marker) is Property:
                prop = self.describe_property(field, marker)
                properties[prop.mapped_name] = prop
            else:
                raise InvalidDeclarationError(
                    f"{type(marker).__name__} is not allowed in embedded type {field.describe()}"
                )

        immutable, constructors = _describe_construction(self.class_, meta)
        descr = EmbeddableDescriptor(
            class_=self.class_,
            properties=properties,
            nested=nested,
            immutable=immutable,
            constructors=constructors,
            override_kind=meta.override_kind,
        )
        descr.standalone = _place(
            descr, None, "", "", Nesting.IMPLODED, True, False, "", {}, set()
        )
        _ensure_unique_names(
            self.class_.__qualname__,
            descr.standalone.properties,
            descr.standalone.embedded,
        )
        return descr


class _EntityIntrospection(_Introspection):
    type_ref: typing.Any
    kind: str
    projected: bool
    bindings: typing.Dict[typing.Any, typing.Any]
    overrides: typing.Dict[str, Property]
    applied_overrides: typing.Set[str]
    identifier: typing.Optional[IdentifierDescriptor]
    key: typing.Optional[KeyDescriptor]
    parent_key: typing.Optional[KeyDescriptor]
    version: typing.Optional[PropertyDescriptor]
    created_timestamp: typing.Optional[PropertyDescriptor]
    updated_timestamp: typing.Optional[PropertyDescriptor]
    properties: "OrderedDict[str, PropertyDescriptor]"
    embedded: typing.List[EmbeddedDescriptor]

    def _process_stereotype(self, meta: Meta) -> None:
        stereotype = meta.stereotype
        if isinstance(stereotype, ProjectedEntity):
            if not stereotype.kind or not stereotype.kind.strip():
                raise InvalidDeclarationError(
                    f"projected entity {self.class_.__qualname__} must name the kind it projects"
                )
            self.kind = stereotype.kind
            self.projected = True
        elif isinstance(stereotype, Entity):
            self.kind = stereotype.kind or self.class_.__name__
            self.projected = False
        else:
            raise InvalidDeclarationError(
                f"{self.class_.__qualname__} is not declared as an entity"
            )

    def _process_generics(self) -> None:
        params = getattr(self.class_, "__parameters__", ())
        args = typing.get_args(self.type_ref) if self.type_ref is not self.class_ else ()
        if args and len(args) != len(params):
            raise InvalidDeclarationError(
                f"{self.type_ref!r} binds {len(args)} type argument(s), but {self.class_.__qualname__} declares {len(params)}"
            )
        self.bindings = dict(zip(params, args))

    def _process_identifier(self, field: _Field, marker: Identifier) -> None:
        if self.identifier is not None:
            raise InvalidDeclarationError(
                f"{self.class_.__qualname__} declares more than one identifier ({self.identifier.name}, {field.name})"
            )
        type_, _ = unwrap_optional(field.type)
        if type_ in (int, str):
            self.identifier = IdentifierDescriptor(
                field.name, field.type, field.declaring_class, marker.auto_generated, type_
            )
            return
        inner: typing.Any = None
        if isinstance(type_, type):
            try:
                inner, _ = unwrap_optional(
                    typing.get_type_hints(type_).get(marker.wrapped_attribute)
                )
            except (NameError, TypeError):
                inner = None
        if inner not in (int, str):
            raise InvalidDeclarationError(
                f"identifier {field.describe()} must be int, str, or a class wrapping one of them in {marker.wrapped_attribute!r}"
            )
        self.identifier = IdentifierDescriptor(
            field.name,
            field.type,
            field.declaring_class,
            marker.auto_generated,
            inner,
            wrapper_class=type_,
            wrapped_attribute=marker.wrapped_attribute,
        )

    def _process_key(self, field: _Field, role: Role) -> None:
        type_, _ = unwrap_optional(field.type)
        if type_ is not Key:
            raise InvalidDeclarationError(
                f"key field {field.describe()} must be of type {Key.__qualname__}, got {type_!r}"
            )
        descr = KeyDescriptor(field.name, field.type, field.declaring_class)
        if role is Role.KEY:
            if self.key is not None:
                raise InvalidDeclarationError(
                    f"{self.class_.__qualname__} declares more than one key field"
                )
            self.key = descr
        else:
            if self.parent_key is not None:
                raise InvalidDeclarationError(
                    f"{self.class_.__qualname__} declares more than one parent key field"
                )
            self.parent_key = descr

    def _process_embedded(self, field: _Field, marker: Embedded) -> None:
        nested = self.describe_nested(field, marker)
        if nested.embeddable.override_kind is not None:
            self.kind = nested.embeddable.override_kind
        self.embedded.append(
            _place(
                nested.embeddable,
                nested.field,
                field.name,
                nested.mapped_name,
                nested.nesting,
                nested.indexed,
                nested.optional,
                "",
                self.overrides,
                self.applied_overrides,
            )
        )

    def _process_property(self, field: _Field, marker: Property) -> None:
        prop = self.describe_property(field, marker)
        if field.inherited:
            override = self.overrides.get(field.name)
            if override is not None:
                self.applied_overrides.add(field.name)
                prop = prop.resolved(prop.mapped_name, override)

        if isinstance(marker, Version):
            if self.version is not None:
                raise InvalidDeclarationError(
                    f"{self.class_.__qualname__} declares more than one version field"
                )
            if unwrap_optional(prop.type)[0] is not int:
                raise InvalidDeclarationError(
                    f"version field {field.describe()} must be of type int, got {prop.type!r}"
                )
            self.version = prop
        elif isinstance(marker, (CreatedTimestamp, UpdatedTimestamp)):
            if not is_valid_timestamp_type(unwrap_optional(prop.type)[0]):
                raise InvalidDeclarationError(
                    f"timestamp field {field.describe()} must be one of {', '.join(VALID_TIMESTAMP_TYPES)}, got {prop.type!r}"
                )
            attr = "created_timestamp" if isinstance(marker, CreatedTimestamp) else "updated_timestamp"
            if getattr(self, attr) is not None:
                raise InvalidDeclarationError(
                    f"{self.class_.__qualname__} declares more than one {attr.replace('_', ' ')} field"
                )
            setattr(self, attr, prop)

        if prop.mapped_name in self.properties:
            raise InvalidDeclarationError(
                f"duplicate property name {prop.mapped_name!r} in {self.class_.__qualname__}"
            )
        self.properties[prop.mapped_name] = prop

    def _process_field(self, field: _Field) -> None:
        marker = classify(field.declaration) if field.declaration is not None else Property()
        role = marker.role
        if role is Role.IGNORED:
            return
        elif role is Role.IDENTIFIER:
            self._process_identifier(field, typing.cast(Identifier, marker))
        elif role in (Role.KEY, Role.PARENT_KEY):
            self._process_key(field, role)
        elif role is Role.EMBEDDED:
            self._process_embedded(field, typing.cast(Embedded, marker))
        else:
            self._process_property(field, typing.cast(Property, marker))

    def _process_listeners(
        self, chain: typing.Sequence[typing.Tuple[type, Meta]]
    ) -> EntityListeners:
        bindings = []
        for class_, meta in reversed(chain):
            for listener in meta.listeners:
                if isinstance(listener, type):
                    try:
                        listener = listener()
                    except TypeError as e:
                        raise InvalidDeclarationError(
                            f"cannot instantiate listener {listener.__qualname__} of {class_.__qualname__}"
                        ) from e
                for callback_type in CallbackType:
                    if callable(getattr(listener, callback_type.value, None)):
                        bindings.append(
                            ListenerBinding(callback_type, callback_type.value, listener, class_)
                        )
            for callback_type, method_names in meta.callbacks.items():
                for method_name in method_names:
                    if not callable(getattr(class_, method_name, None)):
                        raise InvalidDeclarationError(
                            f"{class_.__qualname__} has no method {method_name} for {callback_type.value}"
                        )
                    bindings.append(ListenerBinding(callback_type, method_name, None, class_))
        return EntityListeners(bindings)

    def process(self) -> EntityDescriptor:
        chain = _hierarchy(self.class_)
        meta = chain[0][1]
        self._process_stereotype(meta)
        self._process_generics()
        _bind_type_vars(chain, self.bindings)
        self.overrides = dict(meta.property_overrides)

        for field in _collect_fields(chain, self.bindings):
            self._process_field(field)

        if self.identifier is None:
            raise InvalidDeclarationError(
                f"{self.class_.__qualname__} does not declare an identifier"
            )
        listeners = self._process_listeners(chain)
        _ensure_unique_names(self.class_.__qualname__, self.properties.values(), self.embedded)
        unused = set(self.overrides) - self.applied_overrides
        if unused:
            raise InvalidDeclarationError(
                f"property overrides of {self.class_.__qualname__} match no inherited or embedded property: {', '.join(sorted(unused))}"
            )
        immutable, constructors = _describe_construction(self.class_, meta)

        descr = EntityDescriptor(
            type_ref=self.type_ref,
            class_=self.class_,
            kind=self.kind,
            identifier=self.identifier,
            properties=self.properties,
            embedded=self.embedded,
            key=self.key,
            parent_key=self.parent_key,
            version=self.version,
            created_timestamp=self.created_timestamp,
            updated_timestamp=self.updated_timestamp,
            immutable=immutable,
            constructors=constructors,
            projected=self.projected,
            property_overrides=dict(self.overrides),
            generic_bindings=dict(self.bindings),
            listeners=listeners,
        )
        logger.debug(
            "described %r: %d properties, %d embedded, immutable=%s",
            descr,
            len(descr.properties),
            len(descr.embedded),
            descr.immutable,
        )
        return descr

    def __init__(self, introspector: "TypeIntrospector", type_ref: typing.Any, class_: type):
        super().__init__(introspector, class_)
        self.type_ref = type_ref
        self.projected = False
        self.bindings = {}
        self.overrides = {}
        self.applied_overrides = set()
        self.identifier = None
        self.key = None
        self.parent_key = None
        self.version = None
        self.created_timestamp = None
        self.updated_timestamp = None
        self.properties = OrderedDict()
        self.embedded = []


class TypeIntrospector:
    """
    Derives the descriptor of a domain type once and keeps it in a
    :py:class:`DescriptorCache`.

    :param DescriptorCache cache: where descriptors are kept.
    :param MapperRegistry registry: where value mappers for property types come from.
    """

    cache: DescriptorCache
    registry: MapperRegistry

    def introspect(self, type_ref: typing.Any) -> EntityDescriptor:
        """
        Returns the descriptor of an entity type, building it on first use.

        :param type_ref: an entity class, or a parameterized generic entity
            such as ``Pair[int, str]``.
        """
        if raw_class(type_ref) is None:
            raise InvalidDeclarationError(f"unsupported type reference: {type_ref!r}")
        return self.cache.get_or_create(type_ref, self._build)

    def introspect_embeddable(self, class_: type) -> EmbeddableDescriptor:
        return self.cache.get_or_create(_EmbeddableKey(class_), self._build_embeddable)

    def _build(self, type_ref: typing.Any) -> EntityDescriptor:
        return _EntityIntrospection(self, type_ref, typing.cast(type, raw_class(type_ref))).process()

    def _build_embeddable(self, key: _EmbeddableKey) -> EmbeddableDescriptor:
        return _EmbeddableIntrospection(self, key.class_).process()

    def __init__(self, cache: DescriptorCache, registry: MapperRegistry):
        self.cache = cache
        self.registry = registry
