# genstudio/core/fanout.py
import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Generic, List, Optional, Sequence, TypeVar

T = TypeVar("T")


@dataclass
class Settled(Generic[T]):
    index: int
    value: Optional[T] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def _capture(index: int, aw: Awaitable[T]) -> Settled[T]:
    try:
        return Settled(index=index, value=await aw)
    except Exception as e:
        # Cancellation is a BaseException and still propagates to the group
        return Settled(index=index, error=e)


async def gather_settled(awaitables: Sequence[Awaitable[Any]]) -> List[Settled[Any]]:
    """
    Run all awaitables concurrently and wait for every one to settle.

    Members never raise into the TaskGroup, so one failure cannot cancel its
    siblings. Results come back in input order.
    """
    async with asyncio.TaskGroup() as tg:
        tasks = [tg.create_task(_capture(i, aw)) for i, aw in enumerate(awaitables)]
    return [t.result() for t in tasks]
