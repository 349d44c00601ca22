"""Hook system for API clients.

Hooks are plain callables receiving a call context object. Pre-hooks run
before the call, error-hooks run when the call raises and post-hooks always
run afterwards. Hooks are used for metrics, latency tracking and request
logging.

Example:
    >>> @with_hooks(hooks=Hooks(pre_hooks=[metrics_hook]))
    ... class Api:
    ...     def __init__(self, hooks: Hooks | None = None) -> None: ...
    ...
    ...     @invoke_with_hooks(lambda self: {"method": "files.get"})
    ...     async def get(self) -> bytes: ...
"""

import contextlib
import functools
import inspect
from collections.abc import Callable, Generator
from dataclasses import dataclass, field
from typing import Any, TypeAlias, TypeVar

Hook: TypeAlias = Callable[[Any], None]

T = TypeVar("T")
C = TypeVar("C", bound=type)


@dataclass(frozen=True)
class Hooks:
    """Hooks to run around an API call."""

    pre_hooks: list[Hook] = field(default_factory=list)
    post_hooks: list[Hook] = field(default_factory=list)
    error_hooks: list[Hook] = field(default_factory=list)

    def merge(self, other: "Hooks | None") -> "Hooks":
        """Return new Hooks with `other`'s hooks appended to this one's."""
        if other is None:
            return self
        return Hooks(
            pre_hooks=[*self.pre_hooks, *other.pre_hooks],
            post_hooks=[*self.post_hooks, *other.post_hooks],
            error_hooks=[*self.error_hooks, *other.error_hooks],
        )


@contextlib.contextmanager
def run_with_hooks(context: T, hooks: Hooks) -> Generator[None, Any, None]:
    for hook in hooks.pre_hooks:
        hook(context)
    try:
        yield
    except BaseException:
        for hook in hooks.error_hooks:
            hook(context)
        raise
    finally:
        for hook in hooks.post_hooks:
            hook(context)


def _instance_hooks(instance: Any) -> Hooks:
    return getattr(instance, "_hooks", None) or Hooks()


def invoke_with_hooks(
    context_factory: Callable[[Any], Any] | None = None,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Method decorator running the instance's hooks around each call.

    Works for plain and ``async`` methods. The hooks are read from the
    instance's ``_hooks`` attribute (set by :func:`with_hooks`).

    Args:
        context_factory: Builds the hook context from ``self``. When omitted,
            hooks receive ``None``.
    """

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        def _context(instance: Any) -> Any:
            return context_factory(instance) if context_factory else None

        if inspect.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(self: Any, *args: Any, **kwargs: Any) -> Any:
                with run_with_hooks(_context(self), _instance_hooks(self)):
                    return await func(self, *args, **kwargs)

            return async_wrapper

        @functools.wraps(func)
        def wrapper(self: Any, *args: Any, **kwargs: Any) -> Any:
            with run_with_hooks(_context(self), _instance_hooks(self)):
                return func(self, *args, **kwargs)

        return wrapper

    return decorator


def with_hooks(hooks: Hooks) -> Callable[[C], C]:
    """Class decorator installing built-in hooks on every instance.

    The decorated class' ``__init__`` may accept a ``hooks`` keyword argument;
    those user hooks run after the built-in ones.
    """

    def decorator(cls: C) -> C:
        original_init = cls.__init__

        @functools.wraps(original_init)
        def __init__(self: Any, *args: Any, **kwargs: Any) -> None:
            original_init(self, *args, **kwargs)
            self._hooks = hooks.merge(kwargs.get("hooks"))

        cls.__init__ = __init__  # type: ignore[misc]
        return cls

    return decorator
