import typing

T = typing.TypeVar("T")


class UnspecifiedType:
    """
    Marks an option that was not given, so that an override can tell
    "left alone" apart from an explicit ``None`` or ``False``.
    """

    _singleton: typing.ClassVar[typing.Optional["UnspecifiedType"]] = None

    def __bool__(self):
        return False

    def __repr__(self) -> str:
        return "UNSPECIFIED"

    def __new__(cls) -> "UnspecifiedType":
        if cls._singleton is None:
            cls._singleton = object.__new__(cls)
        return cls._singleton


UNSPECIFIED = UnspecifiedType()


def maybe_unspecified(value: typing.Union[UnspecifiedType, T], default: T) -> T:
    if isinstance(value, UnspecifiedType):
        return default
    return value
