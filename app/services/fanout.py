from typing import Any, Awaitable, Callable, Dict, Iterable, List, TypeVar

import anyio


K = TypeVar("K")
T = TypeVar("T")


def _first_error(group: BaseExceptionGroup) -> BaseException:
    for exc in group.exceptions:
        if isinstance(exc, BaseExceptionGroup):
            return _first_error(exc)
        return exc
    return group


async def gather(*calls: Callable[[], Awaitable[Any]]) -> List[Any]:
    """Run the zero-arg coroutine factories concurrently and join them.

    Results come back in call order. If any call fails the others are
    cancelled and the first failure is re-raised unwrapped.
    """
    results: List[Any] = [None] * len(calls)

    async def _run(index: int, call: Callable[[], Awaitable[Any]]) -> None:
        results[index] = await call()

    try:
        async with anyio.create_task_group() as tg:
            for index, call in enumerate(calls):
                tg.start_soon(_run, index, call)
    except BaseExceptionGroup as group:
        raise _first_error(group)
    return results


async def map_concurrently(fn: Callable[[K], Awaitable[T]], keys: Iterable[K]) -> Dict[K, T]:
    """Call ``fn`` once per distinct key, concurrently; returns {key: result}."""
    unique = list(dict.fromkeys(keys))
    values = await gather(*[(lambda k=k: fn(k)) for k in unique])
    return dict(zip(unique, values))
