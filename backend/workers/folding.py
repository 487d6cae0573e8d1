"""Partial-failure tolerant fan-out over sites for batch jobs."""

from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Generic, TypeVar

import structlog

logger = structlog.get_logger()

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class SiteError:
    site_id: str
    error: str


@dataclass
class FoldResult(Generic[R]):
    results: list[R] = field(default_factory=list)
    errors: list[SiteError] = field(default_factory=list)
    batches: int = 0


def chunked(items: Sequence[T], size: int) -> list[Sequence[T]]:
    if size < 1:
        raise ValueError("batch size must be at least 1")
    return [items[i : i + size] for i in range(0, len(items), size)]


async def fold_sites(
    items: Sequence[T],
    handler: Callable[[T], Awaitable[R]],
    batch_size: int = 10,
    site_key: Callable[[T], str] = str,
) -> FoldResult[R]:
    """Run ``handler`` for every item, batch by batch, one item at a time.

    A failing item is logged and recorded in ``errors``; the rest still run.
    """
    folded: FoldResult[R] = FoldResult()
    for number, batch in enumerate(chunked(items, batch_size), start=1):
        folded.batches = number
        logger.info("jobs.batch_started", batch=number, size=len(batch))
        for item in batch:
            try:
                folded.results.append(await handler(item))
            except Exception as exc:
                site_id = site_key(item)
                logger.error("jobs.site_failed", site_id=site_id, error=str(exc), exc_info=True)
                folded.errors.append(SiteError(site_id=site_id, error=str(exc)))
    return folded
