import types
import typing

T = typing.TypeVar("T")

NoneType = type(None)


def assert_not_none(value: typing.Optional[T]) -> T:
    assert value is not None
    return value


def qualified_name(type_: typing.Any) -> str:
    if isinstance(type_, type):
        return f"{type_.__module__}.{type_.__qualname__}"
    return repr(type_)


def is_union(type_: typing.Any) -> bool:
    origin = typing.get_origin(type_)
    return origin is typing.Union or origin is getattr(types, "UnionType", None)


def unwrap_optional(type_: typing.Any) -> typing.Tuple[typing.Any, bool]:
    """
    Strips ``None`` off an ``Optional[T]`` annotation.

    :param type_: an annotation.
    :return: a tuple of the remaining type and whether ``None`` was a member.
        Unions of more than one non-``None`` member are returned as they are.
    """
    if not is_union(type_):
        return type_, False
    args = typing.get_args(type_)
    rest = tuple(arg for arg in args if arg is not NoneType)
    if len(rest) == len(args):
        return type_, False
    if len(rest) == 1:
        return rest[0], True
    return typing.Union[rest], True  # type: ignore


def substitute_type_vars(
    type_: typing.Any, bindings: typing.Mapping[typing.Any, typing.Any]
) -> typing.Any:
    """
    Replaces the type variables found in ``type_`` with their bound types.
    Type variables that have no binding are left in place.
    """
    if isinstance(type_, typing.TypeVar):
        return bindings.get(type_, type_)
    args = typing.get_args(type_)
    if not args:
        return type_
    new_args = tuple(substitute_type_vars(arg, bindings) for arg in args)
    if new_args == args:
        return type_
    if is_union(type_):
        return typing.Union[new_args]  # type: ignore
    return typing.get_origin(type_)[new_args]


def contains_type_var(type_: typing.Any) -> bool:
    if isinstance(type_, typing.TypeVar):
        return True
    return any(contains_type_var(arg) for arg in typing.get_args(type_))


def raw_class(type_ref: typing.Any) -> typing.Optional[type]:
    """
    Returns the class behind a class or a parameterized generic alias, or ``None``
    for anything else.
    """
    if isinstance(type_ref, type) and not isinstance(type_ref, types.GenericAlias):
        return type_ref
    origin = typing.get_origin(type_ref)
    if isinstance(origin, type):
        return origin
    return None
