import typing

from .cache import DescriptorCache, default_cache
from .introspector import TypeIntrospector
from .mappers import MapperRegistry
from .marshaller import Clock, Intent, Marshaller, utc_now
from .models import EntityDescriptor
from .records import Key, Record
from .unmarshaller import Unmarshaller


class RecordMapper:
    """
    Converts entities to records and back.

    :param DescriptorCache cache: where descriptors are kept. Defaults to the
        process-wide cache; pass a fresh one to start from a clean slate.
    :param MapperRegistry registry: resolves value mappers for property types.
        A registry should not be shared between mappers with different caches.
    :param clock: returns the instant written to timestamp fields.
    """

    cache: DescriptorCache
    registry: MapperRegistry
    introspector: TypeIntrospector
    clock: Clock

    def introspect(self, type_ref: typing.Any) -> EntityDescriptor:
        return self.introspector.introspect(type_ref)

    def marshal(
        self, entity: typing.Any, intent: Intent, type_ref: typing.Any = None
    ) -> typing.Optional[Record]:
        if entity is None:
            return None
        descr = self.introspect(type_ref if type_ref is not None else type(entity))
        return Marshaller(descr, intent, self.clock).marshal(entity)

    def marshal_key(self, entity: typing.Any, type_ref: typing.Any = None) -> Key:
        descr = self.introspect(type_ref if type_ref is not None else type(entity))
        return Marshaller(descr, Intent.UPDATE, self.clock).marshal_key(entity)

    def unmarshal(self, record: typing.Optional[Record], type_ref: typing.Any) -> typing.Any:
        if record is None:
            return None
        return Unmarshaller(self.introspect(type_ref)).unmarshal(record)

    def __init__(
        self,
        cache: typing.Optional[DescriptorCache] = None,
        registry: typing.Optional[MapperRegistry] = None,
        clock: Clock = utc_now,
    ):
        self.cache = cache if cache is not None else default_cache()
        self.registry = registry if registry is not None else MapperRegistry()
        self.introspector = TypeIntrospector(self.cache, self.registry)
        self.clock = clock
