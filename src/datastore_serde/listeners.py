import dataclasses
import enum
import logging
import typing

logger = logging.getLogger(__name__)


class CallbackType(enum.Enum):
    """
    Lifecycle events around which listeners are invoked. The value of each
    member is also the name of the method a listener implements to receive it.
    """

    PRE_INSERT = "pre_insert"
    POST_INSERT = "post_insert"
    PRE_UPDATE = "pre_update"
    POST_UPDATE = "post_update"
    PRE_UPSERT = "pre_upsert"
    POST_UPSERT = "post_upsert"
    PRE_DELETE = "pre_delete"
    POST_DELETE = "post_delete"
    POST_LOAD = "post_load"


@dataclasses.dataclass(frozen=True)
class ListenerBinding:
    """
    A single callback. External bindings call ``method_name`` on the listener
    object with the entity; internal bindings call ``method_name`` on the
    entity itself with no arguments.
    """

    callback_type: CallbackType
    method_name: str
    listener: typing.Optional[typing.Any] = None
    declaring_class: typing.Optional[type] = None

    @property
    def internal(self) -> bool:
        return self.listener is None

    def __call__(self, entity: typing.Any) -> None:
        if self.listener is None:
            getattr(entity, self.method_name)()
        else:
            getattr(self.listener, self.method_name)(entity)


class EntityListeners:
    """
    The ordered listener bindings of an entity type, grouped by callback type.
    """

    _bindings: typing.Mapping[CallbackType, typing.Tuple[ListenerBinding, ...]]

    def bindings_for(self, callback_type: CallbackType) -> typing.Sequence[ListenerBinding]:
        return self._bindings.get(callback_type, ())

    def __bool__(self) -> bool:
        return any(self._bindings.values())

    def invoke(self, callback_type: CallbackType, entity: typing.Any) -> None:
        if entity is None:
            return
        for binding in self.bindings_for(callback_type):
            logger.debug(
                "invoking %s.%s for %s", binding.listener or entity, binding.method_name, callback_type
            )
            binding(entity)

    def __init__(self, bindings: typing.Iterable[ListenerBinding] = ()):
        grouped: typing.Dict[CallbackType, typing.List[ListenerBinding]] = {}
        for binding in bindings:
            grouped.setdefault(binding.callback_type, []).append(binding)
        self._bindings = {k: tuple(v) for k, v in grouped.items()}


NO_LISTENERS = EntityListeners()
