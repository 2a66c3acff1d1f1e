from .cache import DescriptorCache  # noqa: F401
from .declarative import (  # noqa: F401
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
from .exceptions import (  # noqa: F401
    ConstructorArityError,
    DatastoreSerdeException,
    InvalidConstructorError,
    InvalidDeclarationError,
    MappingError,
    MissingNameBindingError,
    OptimisticLockError,
    RecordStoreError,
)
from .listeners import CallbackType  # noqa: F401
from .manager import EntityManager  # noqa: F401
from .mapper import RecordMapper  # noqa: F401
from .mappers import MapperRegistry, ValueMapper  # noqa: F401
from .marshaller import Intent  # noqa: F401
from .records import Key, Record, Value, ValueType  # noqa: F401
