import logging
import typing

from .exceptions import ConstructorArityError, MappingError, MissingNameBindingError
from .models import (
    ConstructorDescriptor,
    EmbeddableDescriptor,
    EmbeddedDescriptor,
    EntityDescriptor,
    FieldDescriptor,
    PropertyDescriptor,
    TypeDescriptor,
)
from .records import Record, ValueType
from .utils.typing import assert_not_none

logger = logging.getLogger(__name__)

ResolvedValues = typing.List[typing.Tuple[FieldDescriptor, typing.Any]]


def select_constructor(
    descr: TypeDescriptor, field_names: typing.AbstractSet[str]
) -> ConstructorDescriptor:
    """
    Picks the declared constructor whose parameters receive exactly the fields
    in ``field_names``.
    """
    for constructor in descr.constructors:
        if not constructor.unbound and constructor.field_names == field_names:
            return constructor
    if any(
        constructor.unbound and constructor.arity == len(field_names)
        for constructor in descr.constructors
    ):
        raise MissingNameBindingError(descr.class_)
    raise ConstructorArityError(descr.class_, len(field_names))


def instantiate(
    descr: TypeDescriptor, values: ResolvedValues, embedded: ResolvedValues
) -> typing.Any:
    """
    Builds an instance from resolved field values. Immutable types go through a
    declared constructor; mutable types are created empty and populated, an
    absent (``None``) embedded object leaving the field's default in place.
    """
    if descr.immutable:
        fields = {field.name: value for field, value in values}
        fields.update((field.name, value) for field, value in embedded)
        return select_constructor(descr, set(fields)).invoke(fields)

    target = descr.new_instance()
    for field, value in values:
        field.accessor.set(target, value)
    for field, value in embedded:
        if value is not None:
            field.accessor.set(target, value)
    return target


def _read_property(prop: PropertyDescriptor, record: Record, values: ResolvedValues) -> None:
    stored = record.get(prop.mapped_name)
    if stored is None:
        return
    try:
        values.append((prop, prop.to_domain(stored)))
    except (TypeError, ValueError) as e:
        raise MappingError(
            f"cannot read {stored!r} ({e})", prop.declaring_class, prop.name
        ) from e


def _read_contents(site: EmbeddedDescriptor, record: Record) -> typing.Any:
    values: ResolvedValues = []
    embedded: ResolvedValues = []
    for prop in site.properties:
        _read_property(prop, record, values)
    for child in site.embedded:
        _read_site(child, record, embedded)
    return instantiate(site.embeddable, values, embedded)


def _read_site(site: EmbeddedDescriptor, record: Record, embedded: ResolvedValues) -> None:
    field = assert_not_none(site.field)
    if not site.imploded:
        embedded.append((field, _read_contents(site, record)))
        return
    stored = record.get(site.mapped_name)
    if stored is None:
        return
    if stored.is_null:
        embedded.append((field, None))
    elif stored.type is ValueType.RECORD:
        embedded.append((field, _read_contents(site, stored.value)))
    else:
        raise MappingError(
            f"expected a nested record, got {stored.type.value}", field.declaring_class, field.name
        )


def unmarshal_embeddable(descr: EmbeddableDescriptor, record: Record) -> typing.Any:
    """
    Rebuilds an embeddable object held in a collection from its nested record.
    """
    return _read_contents(assert_not_none(descr.standalone), record)


class Unmarshaller:
    """
    Converts records back into domain objects of one entity type.

    Record properties the descriptor does not know are ignored, and known
    properties missing from the record leave their fields untouched.
    """

    descr: EntityDescriptor

    def unmarshal(self, record: typing.Optional[Record]) -> typing.Any:
        if record is None:
            return None
        descr = self.descr
        if record.key is None:
            raise MappingError("record has no key", descr.class_)

        values: ResolvedValues = []
        identifier = descr.identifier
        try:
            values.append((identifier, identifier.wrap(record.key.id)))
        except (TypeError, ValueError) as e:
            raise MappingError(str(e), descr.class_, identifier.name) from e
        if descr.key is not None:
            values.append((descr.key, record.key))
        if descr.parent_key is not None and record.key.parent is not None:
            values.append((descr.parent_key, record.key.parent))
        for prop in descr.properties.values():
            _read_property(prop, record, values)

        embedded: ResolvedValues = []
        for site in descr.embedded:
            _read_site(site, record, embedded)

        entity = instantiate(descr, values, embedded)
        logger.debug("unmarshalled %r into %s", record.key, descr.class_.__qualname__)
        return entity

    def __init__(self, descr: EntityDescriptor):
        self.descr = descr


def unmarshal(record: typing.Optional[Record], descr: EntityDescriptor) -> typing.Any:
    return Unmarshaller(descr).unmarshal(record)
