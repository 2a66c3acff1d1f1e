import threading
import typing

T = typing.TypeVar("T")


class Deferred(typing.Generic[T]):
    """
    A deferred object encapsulates a lazy evaluated value.
    It takes a function that yields the value for its constructor argument, and
    it behaves as a callable by which it resolves to the yielded value.
    The yielder runs at most once, even when several threads resolve the value
    at the same time.

    :param Callable[..., T] yielder: a callable that resolves the value.
    :param args: positional arguments for the yielder.
    :param kwargs: keyword arguments for the yielder.
    """

    _yielder: typing.Callable[..., T]
    _value_yielded: bool = False
    _value: typing.Optional[T] = None
    _args: typing.Sequence[typing.Any]
    _kwargs: typing.Mapping[str, typing.Any]
    _lock: typing.ContextManager[bool]

    def __init__(self, yielder: typing.Callable[..., T], *args, **kwargs) -> None:
        self._yielder = yielder
        self._args = args
        self._kwargs = kwargs
        self._lock = threading.RLock()

    def __call__(self) -> T:
        if not self._value_yielded:
            with self._lock:
                if not self._value_yielded:
                    self._value = self._yielder(*self._args, **self._kwargs)
                    self._value_yielded = True
        return typing.cast(T, self._value)
