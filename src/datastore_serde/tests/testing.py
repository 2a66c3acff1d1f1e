import dataclasses
import datetime
import enum
import typing

from ..declarative import (
    Constructor,
    CreatedTimestamp,
    Embeddable,
    Embedded,
    Entity,
    Identifier,
    Ignore,
    KeyField,
    MappedSuperclass,
    Nesting,
    ParentKeyField,
    ProjectedEntity,
    Property,
    UpdatedTimestamp,
    Version,
)
from ..listeners import CallbackType
from ..records import Key

EVENTS: typing.List[typing.Tuple[str, typing.Any]] = []

FIXED_INSTANT = datetime.datetime(2024, 1, 2, 3, 4, 5, tzinfo=datetime.timezone.utc)
FIXED_MILLIS = 1704164645000


def fixed_clock() -> datetime.datetime:
    return FIXED_INSTANT


class Color(enum.Enum):
    RED = "red"
    GREEN = "green"
    BLUE = "blue"


@dataclasses.dataclass
class Address:
    street: typing.Optional[str] = None
    zip: typing.Optional[str] = None

    class Meta:
        stereotype = Embeddable()


@dataclasses.dataclass
class Contact:
    id: int = 0
    name: typing.Optional[str] = None
    address: typing.Optional[Address] = None

    class Meta:
        stereotype = Entity()
        fields = {
            "id": Identifier(),
            "address": Embedded(),
        }


@dataclasses.dataclass
class ZipCode:
    code: typing.Optional[str] = None
    plus_four: typing.Optional[str] = None

    class Meta:
        stereotype = Embeddable()
        fields = {
            "plus_four": Property(name="plusFour"),
        }


@dataclasses.dataclass
class PostalAddress:
    street: typing.Optional[str] = None
    city: typing.Optional[str] = None
    zip_code: typing.Optional[ZipCode] = None

    class Meta:
        stereotype = Embeddable()
        fields = {
            "zip_code": Embedded(name="zip", nesting=Nesting.EXPLODED),
        }


@dataclasses.dataclass(frozen=True)
class PhoneNumber:
    country_code: typing.Optional[str] = None
    area_code: typing.Optional[str] = None
    subscriber_number: typing.Optional[str] = None

    class Meta:
        stereotype = Embeddable()
        fields = {
            "country_code": Property(name="countryCode", optional=True),
        }


@dataclasses.dataclass
class Customer:
    id: int = 0
    name: typing.Optional[str] = None
    favorite_color: typing.Optional[Color] = None
    tags: typing.List[str] = dataclasses.field(default_factory=list)
    phones: typing.List[PhoneNumber] = dataclasses.field(default_factory=list)
    home_address: typing.Optional[PostalAddress] = None
    work_address: typing.Optional[PostalAddress] = None
    key: typing.Optional[Key] = None
    notes: typing.Optional[str] = None

    class Meta:
        stereotype = Entity(kind="Customers")
        fields = {
            "id": Identifier(auto_generated=False),
            "name": Property(name="fullName", indexed=False),
            "home_address": Embedded(name="home"),
            "work_address": Embedded(nesting=Nesting.EXPLODED),
            "key": KeyField(),
            "notes": Ignore(),
        }
        property_overrides = {
            "work_address.zip_code.plus_four": Property(name="zipx", indexed=False),
        }


@dataclasses.dataclass(frozen=True)
class ImmutableAddress:
    street: typing.Optional[str] = None
    zip: typing.Optional[str] = None

    class Meta:
        stereotype = Embeddable()


@dataclasses.dataclass(frozen=True)
class ImmutableContact:
    id: int = 0
    first_name: typing.Optional[str] = None
    last_name: typing.Optional[str] = None
    mobile_number: typing.Optional[PhoneNumber] = None
    home_address: typing.Optional[ImmutableAddress] = None
    work_address: typing.Optional[ImmutableAddress] = None

    class Meta:
        stereotype = Entity(kind="ImmutableContacts")
        fields = {
            "id": Identifier(),
            "mobile_number": Embedded(name="cellNumber"),
            "home_address": Embedded(),
            "work_address": Embedded(nesting=Nesting.EXPLODED),
        }
        property_overrides = {
            "work_address.zip": Property(name="workZip"),
        }


class Person:
    id: int
    given_name: str
    family_name: str

    class Meta:
        stereotype = Entity()
        fields = {"id": Identifier(auto_generated=False)}
        constructors = [
            Constructor(function="create", bindings={"first": "given_name", "last": "family_name"}),
        ]

    @classmethod
    def create(cls, id: int, first: str, last: str) -> "Person":
        return cls(id, first, last)

    def __eq__(self, other):
        return isinstance(other, Person) and vars(self) == vars(other)

    def __init__(self, id: int, given_name: str, family_name: str):
        self.id = id
        self.given_name = given_name
        self.family_name = family_name


class NameOnly:
    name: str
    surname: typing.Optional[str]

    class Meta:
        stereotype = Entity()
        fields = {"name": Identifier(auto_generated=False)}
        constructors = [Constructor()]

    def __init__(self, name: str):
        self.name = name
        self.surname = "Doe"


class UnboundName:
    name: str
    surname: typing.Optional[str]

    class Meta:
        stereotype = Entity()
        fields = {"name": Identifier(auto_generated=False)}
        constructors = [Constructor(function="of")]

    @staticmethod
    def of(name, surname, /):
        return UnboundName(name, surname)

    def __init__(self, name: str, surname: typing.Optional[str]):
        self.name = name
        self.surname = surname


class Pair:
    id: int
    first: typing.Optional[str]
    second: typing.Optional[str]

    class Meta:
        stereotype = Entity()
        fields = {"id": Identifier(auto_generated=False)}
        constructors = [Constructor(function="positional"), Constructor()]

    @staticmethod
    def positional(id, first, second, /):
        return Pair(id, first, second)

    def __eq__(self, other):
        return isinstance(other, Pair) and vars(self) == vars(other)

    def __init__(self, id: int, first: typing.Optional[str], second: typing.Optional[str]):
        self.id = id
        self.first = first
        self.second = second


class Reply:
    id: int
    body: typing.Optional[str]
    parent: typing.Optional[Key]

    class Meta:
        stereotype = Entity()
        fields = {"id": Identifier(auto_generated=False), "parent": ParentKeyField()}
        constructors = [Constructor(function="top_level"), Constructor()]

    @classmethod
    def top_level(cls, id: int, body: typing.Optional[str]) -> "Reply":
        return cls(id, body, None)

    def __eq__(self, other):
        return isinstance(other, Reply) and vars(self) == vars(other)

    def __init__(self, id: int, body: typing.Optional[str], parent: typing.Optional[Key]):
        self.id = id
        self.body = body
        self.parent = parent


@dataclasses.dataclass
class Task:
    id: int = 0
    title: typing.Optional[str] = None
    version: int = 0
    created_on: typing.Optional[datetime.datetime] = None
    updated_on: typing.Optional[int] = None

    class Meta:
        stereotype = Entity()
        fields = {
            "id": Identifier(),
            "version": Version(),
            "created_on": CreatedTimestamp(),
            "updated_on": UpdatedTimestamp(name="modified"),
        }


class AuditListener:
    def pre_insert(self, entity):
        EVENTS.append(("AuditListener.pre_insert", entity))

    def post_load(self, entity):
        EVENTS.append(("AuditListener.post_load", entity))


class DocumentListener:
    def pre_insert(self, entity):
        EVENTS.append(("DocumentListener.pre_insert", entity))

    def post_insert(self, entity):
        EVENTS.append(("DocumentListener.post_insert", entity))

    def pre_delete(self, entity):
        EVENTS.append(("DocumentListener.pre_delete", entity))


@dataclasses.dataclass
class BaseDocument:
    created_by: typing.Optional[str] = None

    class Meta:
        stereotype = MappedSuperclass()
        listeners = [AuditListener]
        callbacks = {CallbackType.PRE_INSERT: "base_pre_insert"}

    def base_pre_insert(self):
        EVENTS.append(("BaseDocument.base_pre_insert", self))


@dataclasses.dataclass
class Document(BaseDocument):
    id: int = 0
    title: typing.Optional[str] = None

    class Meta:
        stereotype = Entity()
        fields = {"id": Identifier()}
        listeners = [DocumentListener]
        callbacks = {
            CallbackType.PRE_INSERT: "before_insert",
            CallbackType.POST_LOAD: "after_load",
        }
        property_overrides = {
            "created_by": Property(name="author", indexed=False),
        }

    def before_insert(self):
        EVENTS.append(("Document.before_insert", self))

    def after_load(self):
        EVENTS.append(("Document.after_load", self))


T = typing.TypeVar("T")
Z = typing.TypeVar("Z")


@dataclasses.dataclass
class GenericEntity(typing.Generic[T, Z]):
    id: int = 0
    embedded_generic: typing.Optional[T] = None
    generic: typing.Optional[Z] = None

    class Meta:
        stereotype = Entity()
        fields = {
            "id": Identifier(),
            "embedded_generic": Embedded(),
        }


@dataclasses.dataclass
class KindOverride:
    value: typing.Optional[str] = None

    class Meta:
        stereotype = Embeddable()
        override_kind = "generic"


@dataclasses.dataclass
class NotEmbeddableKindOverride:
    value: typing.Optional[str] = None

    class Meta:
        override_kind = "generic"


@dataclasses.dataclass(frozen=True)
class ContactId:
    value: int


@dataclasses.dataclass
class WrappedIdEntity:
    id: typing.Optional[ContactId] = None
    name: typing.Optional[str] = None

    class Meta:
        stereotype = Entity()
        fields = {"id": Identifier()}


@dataclasses.dataclass
class Tag:
    id: typing.Optional[str] = None
    label: typing.Optional[str] = None

    class Meta:
        stereotype = Entity()
        fields = {"id": Identifier()}


@dataclasses.dataclass
class Comment:
    id: int = 0
    body: typing.Optional[str] = None
    parent: typing.Optional[Key] = None

    class Meta:
        stereotype = Entity()
        fields = {
            "id": Identifier(),
            "parent": ParentKeyField(),
        }


@dataclasses.dataclass
class ContactSummary:
    id: int = 0
    name: typing.Optional[str] = None

    class Meta:
        stereotype = ProjectedEntity(kind="Contact")
        fields = {"id": Identifier()}
