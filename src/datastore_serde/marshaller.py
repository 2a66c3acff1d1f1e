import datetime
import enum
import logging
import typing
import uuid

from .exceptions import MappingError
from .models import EmbeddableDescriptor, EmbeddedDescriptor, EntityDescriptor, PropertyDescriptor
from .records import Key, Record, Value, ValueType
from .utils.typing import assert_not_none, unwrap_optional

logger = logging.getLogger(__name__)

Clock = typing.Callable[[], datetime.datetime]


def utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class Intent(enum.Enum):
    INSERT = "insert"
    UPDATE = "update"
    UPSERT = "upsert"
    BATCH_UPDATE = "batch_update"

    @property
    def requires_complete_key(self) -> bool:
        return self in (Intent.UPDATE, Intent.BATCH_UPDATE)


def _write_property(prop: PropertyDescriptor, target: typing.Any, record: Record) -> None:
    value = prop.accessor.get(target) if target is not None else None
    try:
        record[prop.mapped_name] = prop.to_store(value)
    except (TypeError, ValueError) as e:
        raise MappingError(f"cannot store {value!r} ({e})", prop.declaring_class, prop.name) from e


def _write_contents(site: EmbeddedDescriptor, value: typing.Any, record: Record) -> None:
    for prop in site.properties:
        _write_property(prop, value, record)
    for child in site.embedded:
        _write_site(child, value, record)


def _write_site(site: EmbeddedDescriptor, target: typing.Any, record: Record) -> None:
    value = site.accessor.get(target) if target is not None else None
    if site.imploded:
        if value is None:
            record[site.mapped_name] = Value.null(site.indexed)
            return
        nested = Record()
        _write_contents(site, value, nested)
        record[site.mapped_name] = Value(ValueType.RECORD, nested, site.indexed)
    else:
        # a missing sub-object still writes a null for every leaf
        _write_contents(site, value, record)


def marshal_embeddable(descr: EmbeddableDescriptor, value: typing.Any) -> Record:
    """
    Converts an embeddable object held in a collection into a nested record.
    """
    record = Record()
    _write_contents(assert_not_none(descr.standalone), value, record)
    return record


class Marshaller:
    """
    Converts domain objects of one entity type into records.

    :param EntityDescriptor descr: the descriptor of the entity type.
    :param Intent intent: the write the record is meant for; it decides how the
        version and timestamps are set and whether an incomplete key is allowed.
    :param clock: returns the current instant as an aware UTC ``datetime``.
    """

    descr: EntityDescriptor
    intent: Intent
    clock: Clock

    def marshal_key(self, entity: typing.Any) -> Key:
        descr = self.descr
        identifier = descr.identifier
        try:
            id = identifier.unwrap(identifier.accessor.get(entity))
        except (TypeError, ValueError) as e:
            raise MappingError(str(e), descr.class_, identifier.name) from e

        if id is None:
            if not identifier.auto_generated:
                raise MappingError("identifier is not set", descr.class_, identifier.name)
            if self.intent.requires_complete_key:
                raise MappingError(
                    f"identifier must be set for {self.intent.value}", descr.class_, identifier.name
                )
            if identifier.id_type is str:
                id = str(uuid.uuid4())

        parent = None
        if descr.parent_key is not None:
            parent = descr.parent_key.accessor.get(entity)
        return Key(descr.kind, id, parent)

    def _write_version(self, entity: typing.Any, record: Record) -> None:
        version = self.descr.version
        if version is None:
            return
        if self.intent is Intent.INSERT:
            new_version = 1
        else:
            current = version.accessor.get(entity)
            new_version = (current or 0) + 1
        record[version.mapped_name] = version.to_store(new_version)

    def _write_timestamps(self, record: Record) -> None:
        descr = self.descr
        if descr.created_timestamp is None and descr.updated_timestamp is None:
            return
        instant = self.clock()
        if self.intent is Intent.INSERT and descr.created_timestamp is not None:
            self._write_timestamp(descr.created_timestamp, instant, record)
        if descr.updated_timestamp is not None:
            self._write_timestamp(descr.updated_timestamp, instant, record)

    def _write_timestamp(
        self, prop: PropertyDescriptor, instant: datetime.datetime, record: Record
    ) -> None:
        type_, _ = unwrap_optional(prop.type)
        value: typing.Any = instant
        if type_ is int:
            value = int(instant.timestamp() * 1000)
        record[prop.mapped_name] = prop.to_store(value)

    def marshal(self, entity: typing.Any) -> typing.Optional[Record]:
        if entity is None:
            return None
        descr = self.descr
        if descr.projected:
            raise MappingError("projected entities cannot be written", descr.class_)
        if not isinstance(entity, descr.class_):
            raise MappingError(f"expected an instance, got {type(entity).__qualname__}", descr.class_)

        record = Record(self.marshal_key(entity))
        for prop in descr.properties.values():
            _write_property(prop, entity, record)
        for site in descr.embedded:
            _write_site(site, entity, record)
        self._write_version(entity, record)
        self._write_timestamps(record)
        logger.debug("marshalled %r for %s into %d properties", record.key, self.intent.value, len(record))
        return record

    def __init__(self, descr: EntityDescriptor, intent: Intent, clock: Clock = utc_now):
        self.descr = descr
        self.intent = intent
        self.clock = clock


def marshal(
    entity: typing.Any, descr: EntityDescriptor, intent: Intent, clock: Clock = utc_now
) -> typing.Optional[Record]:
    return Marshaller(descr, intent, clock).marshal(entity)


def marshal_key(entity: typing.Any, descr: EntityDescriptor) -> Key:
    """
    Returns the complete key of ``entity``, as needed to delete it.
    """
    return Marshaller(descr, Intent.UPDATE).marshal_key(entity)
