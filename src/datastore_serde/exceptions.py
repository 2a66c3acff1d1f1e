import abc
import typing


class DatastoreSerdeException(Exception, metaclass=abc.ABCMeta):
    message: str

    def __str__(self):
        return self.message


class InvalidDeclarationError(DatastoreSerdeException):
    """
    Raised when a domain type cannot be described: a structural problem in its
    declaration that retrying will not fix.
    """

    message: str

    def __init__(self, message: str):
        self.message = message


class CyclicEmbeddingError(InvalidDeclarationError):
    pass


class InvalidConstructorError(DatastoreSerdeException):
    class_: type

    def __init__(self, class_: type):
        self.class_ = class_


class ConstructorArityError(InvalidConstructorError):
    arity: int

    @property
    def message(self) -> str:
        return f"Class {self.class_.__qualname__} requires a public constructor with {self.arity} parameters"

    def __init__(self, class_: type, arity: int):
        super().__init__(class_)
        self.arity = arity


class MissingNameBindingError(InvalidConstructorError):
    @property
    def message(self) -> str:
        return f"All constructor fields must have a name binding ({self.class_.__qualname__})"


class MappingError(DatastoreSerdeException):
    """
    Raised when a value cannot be converted between its domain and record forms.
    The underlying error, if any, is chained as ``__cause__``.
    """

    class_: typing.Optional[type]
    field_name: typing.Optional[str]
    detail: str

    @property
    def message(self) -> str:
        if self.class_ is None:
            return self.detail
        location = self.class_.__qualname__
        if self.field_name is not None:
            location = f"{location}.{self.field_name}"
        return f"{location}: {self.detail}"

    def __init__(
        self,
        detail: str,
        class_: typing.Optional[type] = None,
        field_name: typing.Optional[str] = None,
    ):
        self.detail = detail
        self.class_ = class_
        self.field_name = field_name


class NoSuitableMapperError(MappingError):
    type_: typing.Any

    def __init__(
        self,
        type_: typing.Any,
        class_: typing.Optional[type] = None,
        field_name: typing.Optional[str] = None,
    ):
        super().__init__(f"no value mapper found for {type_!r}", class_, field_name)
        self.type_ = type_


class OptimisticLockError(DatastoreSerdeException):
    message: str

    def __init__(self, message: str):
        self.message = message


class RecordStoreError(DatastoreSerdeException):
    message: str

    def __init__(self, message: str):
        self.message = message


class RecordNotFoundError(RecordStoreError):
    key: "records.Key"

    def __init__(self, key: "records.Key"):
        super().__init__(f"no record found for {key}")
        self.key = key


class RecordExistsError(RecordStoreError):
    key: "records.Key"

    def __init__(self, key: "records.Key"):
        super().__init__(f"record already exists for {key}")
        self.key = key


if typing.TYPE_CHECKING:
    from . import records  # noqa: E402
