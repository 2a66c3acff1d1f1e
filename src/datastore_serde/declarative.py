import collections.abc
import dataclasses
import enum
import typing

from .exceptions import InvalidDeclarationError
from .listeners import CallbackType
from .utils.types import UNSPECIFIED, UnspecifiedType


class Nesting(enum.Enum):
    IMPLODED = "imploded"
    """
    The embedded object is stored as a single nested record.
    """
    EXPLODED = "exploded"
    """
    The embedded object's properties are flattened into the enclosing record
    under dotted names.
    """


class Stereotype:
    pass


@dataclasses.dataclass(frozen=True)
class Entity(Stereotype):
    kind: typing.Optional[str] = None


@dataclasses.dataclass(frozen=True)
class ProjectedEntity(Stereotype):
    kind: str = ""


@dataclasses.dataclass(frozen=True)
class Embeddable(Stereotype):
    pass


@dataclasses.dataclass(frozen=True)
class MappedSuperclass(Stereotype):
    pass


class Role(enum.IntEnum):
    """
    What a field means to the record. Lower values take precedence when a field
    carries several markers.
    """

    IGNORED = 0
    IDENTIFIER = 1
    KEY = 2
    PARENT_KEY = 3
    EMBEDDED = 4
    PROPERTY = 5


class FieldMarker:
    role: typing.ClassVar[Role]


@dataclasses.dataclass(frozen=True)
class Ignore(FieldMarker):
    role = Role.IGNORED


@dataclasses.dataclass(frozen=True)
class Identifier(FieldMarker):
    """
    Marks the field holding the id part of the record key.

    :param bool auto_generated: whether the store (``int`` ids) or the mapper
        (``str`` ids, as UUIDs) fills in an unset id on insert.
    :param str wrapped_attribute: for identifier types wrapping a primitive, the
        attribute holding the primitive.
    """

    role = Role.IDENTIFIER

    auto_generated: bool = True
    wrapped_attribute: str = "value"


@dataclasses.dataclass(frozen=True)
class KeyField(FieldMarker):
    role = Role.KEY


@dataclasses.dataclass(frozen=True)
class ParentKeyField(FieldMarker):
    role = Role.PARENT_KEY


@dataclasses.dataclass(frozen=True)
class Property(FieldMarker):
    role = Role.PROPERTY

    name: typing.Union[UnspecifiedType, str] = UNSPECIFIED
    indexed: typing.Union[UnspecifiedType, bool] = UNSPECIFIED
    optional: typing.Union[UnspecifiedType, bool] = UNSPECIFIED

    def merged(self, other: "Property") -> "Property":
        """
        Returns a copy of this marker with every option that ``other``
        specifies taken from ``other``.
        """
        return dataclasses.replace(
            self,
            **{
                f.name: getattr(other, f.name)
                for f in dataclasses.fields(Property)
                if getattr(other, f.name) is not UNSPECIFIED
            },
        )


@dataclasses.dataclass(frozen=True)
class Version(Property):
    pass


@dataclasses.dataclass(frozen=True)
class CreatedTimestamp(Property):
    pass


@dataclasses.dataclass(frozen=True)
class UpdatedTimestamp(Property):
    pass


@dataclasses.dataclass(frozen=True)
class Embedded(FieldMarker):
    role = Role.EMBEDDED

    name: typing.Union[UnspecifiedType, str] = UNSPECIFIED
    nesting: Nesting = Nesting.IMPLODED
    indexed: typing.Union[UnspecifiedType, bool] = UNSPECIFIED
    optional: typing.Union[UnspecifiedType, bool] = UNSPECIFIED


FieldDeclaration = typing.Union[FieldMarker, typing.Tuple[FieldMarker, ...]]


def classify(declaration: FieldDeclaration) -> FieldMarker:
    """
    Reduces a field declaration to the single marker that decides its role.
    Among several markers, the one with the highest-precedence role wins;
    property-role markers are merged, the specialized one (version or
    timestamp) giving its kind to the result.
    """
    markers = declaration if isinstance(declaration, tuple) else (declaration,)
    if not markers:
        raise InvalidDeclarationError("empty field declaration")
    for marker in markers:
        if not isinstance(marker, FieldMarker):
            raise InvalidDeclarationError(f"{marker!r} is not a field marker")
    role = min(marker.role for marker in markers)
    candidates = [marker for marker in markers if marker.role == role]
    if role is not Role.PROPERTY:
        return candidates[0]
    special = [marker for marker in candidates if type(marker) is not Property]
    if len({type(marker) for marker in special}) > 1:
        raise InvalidDeclarationError(
            f"conflicting markers: {', '.join(type(m).__name__ for m in special)}"
        )
    result = typing.cast(Property, special[0] if special else candidates[0])
    for marker in candidates:
        if marker is not result:
            result = result.merged(typing.cast(Property, marker))
    return result


@dataclasses.dataclass(frozen=True)
class Constructor:
    """
    Declares how an immutable type is constructed.

    :param function: the callable building an instance, or the name of a
        class or static method on the type. Defaults to the type itself.
    :param bindings: maps each parameter name to the field it receives.
        Parameters not listed are bound to the field of the same name, except
        positional-only and variadic parameters, which stay unbound.
    """

    function: typing.Union[None, str, typing.Callable[..., typing.Any]] = None
    bindings: typing.Optional[typing.Mapping[str, str]] = None


@dataclasses.dataclass
class Meta:
    stereotype: typing.Optional[Stereotype] = None
    fields: typing.Mapping[str, FieldDeclaration] = dataclasses.field(default_factory=dict)
    override_kind: typing.Optional[str] = None
    property_overrides: typing.Mapping[str, Property] = dataclasses.field(default_factory=dict)
    constructors: typing.Sequence[Constructor] = ()
    listeners: typing.Sequence[typing.Any] = ()
    callbacks: typing.Mapping[CallbackType, typing.Sequence[str]] = dataclasses.field(
        default_factory=dict
    )


_KNOWN_OPTIONS = frozenset(f.name for f in dataclasses.fields(Meta))


def _as_sequence(value: typing.Any) -> typing.Sequence[typing.Any]:
    if isinstance(value, (str, bytes)) or not isinstance(value, collections.abc.Iterable):
        return (value,)
    return tuple(value)


def handle_meta(meta: typing.Optional[type]) -> Meta:
    if meta is None:
        return Meta()
    attrs = {k: v for k, v in vars(meta).items() if not k.startswith("__")}
    unknown = set(attrs) - _KNOWN_OPTIONS
    if unknown:
        raise InvalidDeclarationError(
            f"unknown option(s) in {meta.__qualname__}: {', '.join(sorted(unknown))}"
        )

    stereotype = attrs.get("stereotype")
    if isinstance(stereotype, type) and issubclass(stereotype, Stereotype):
        stereotype = stereotype()
    if stereotype is not None and not isinstance(stereotype, Stereotype):
        raise InvalidDeclarationError(f"{stereotype!r} is not a stereotype ({meta.__qualname__})")

    fields = attrs.get("fields", {})
    if not isinstance(fields, collections.abc.Mapping):
        raise InvalidDeclarationError(f"fields must be a mapping ({meta.__qualname__})")

    property_overrides = attrs.get("property_overrides", {})
    for path, override in property_overrides.items():
        if not isinstance(override, Property):
            raise InvalidDeclarationError(
                f"override for {path} must be a Property ({meta.__qualname__})"
            )

    constructors = _as_sequence(attrs.get("constructors", ()))
    for constructor in constructors:
        if not isinstance(constructor, Constructor):
            raise InvalidDeclarationError(
                f"{constructor!r} is not a Constructor ({meta.__qualname__})"
            )

    callbacks: typing.Dict[CallbackType, typing.Sequence[str]] = {}
    for callback_type, method_names in attrs.get("callbacks", {}).items():
        try:
            callback_type = CallbackType(callback_type)
        except ValueError:
            raise InvalidDeclarationError(
                f"unknown callback type {callback_type!r} ({meta.__qualname__})"
            )
        callbacks[callback_type] = tuple(_as_sequence(method_names))

    return Meta(
        stereotype=stereotype,
        fields=dict(fields),
        override_kind=attrs.get("override_kind"),
        property_overrides=dict(property_overrides),
        constructors=constructors,
        listeners=_as_sequence(attrs.get("listeners", ())),
        callbacks=callbacks,
    )


def meta_of(class_: type) -> Meta:
    """
    Returns the normalized ``Meta`` declared by ``class_`` itself; an inherited
    ``Meta`` is not taken into account.
    """
    return handle_meta(vars(class_).get("Meta"))


def is_embeddable(class_: type) -> bool:
    return (
        isinstance(class_, type)
        and "Meta" in vars(class_)
        and isinstance(meta_of(class_).stereotype, Embeddable)
    )
