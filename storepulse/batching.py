import asyncio
import time
from typing import Awaitable, Callable, Dict, Iterator, List, Optional, Sequence, Tuple
from loguru import logger

from storepulse.config import PipelineConfig
from storepulse.models import (
    UNKNOWN,
    BatchResult,
    BatchSummary,
    ProbeFailure,
    ProbeOutcome,
    ProbeSuccess,
    StoreItemPair,
    WorkUnit,
)
from storepulse.prober import ExternalProber

Sleep = Callable[[float], Awaitable[None]]


def batch_iter(units: Sequence[WorkUnit], batch_size: int) -> Iterator[Tuple[int, Sequence[WorkUnit]]]:
    """
    Yield index and work-unit slices of size `batch_size` for batched processing.
    """
    n = len(units)
    for i in range(0, n, batch_size):
        yield i, units[i:i + batch_size]


def build_store_item_units(
    stores: Sequence[Dict],
    items: Sequence[Dict[str, str]],
    item_subset: Optional[Sequence[str]] = None,
) -> List[StoreItemPair]:
    """
    Cross every serviceable store with every item to check.

    Args:
        stores: Store dicts with store_id, lat, lng and spot_name/area/city.
        items: Item dicts with product_id and item_internal_name.
        item_subset: When non-empty, only these item ids are checked. Ids missing
                     from `items` are still probed, with an unknown internal name.

    Returns:
        List[StoreItemPair]: Store-major cross product.
    """
    names = {str(i["product_id"]): i.get("item_internal_name") or UNKNOWN for i in items}
    if item_subset:
        item_ids = [str(i) for i in dict.fromkeys(item_subset)]
    else:
        item_ids = list(names)

    units = []
    for store in stores:
        for item_id in item_ids:
            units.append(StoreItemPair(
                store_id=str(store["store_id"]),
                lat=store["lat"],
                lng=store["lng"],
                item_id=item_id,
                item_internal_name=names.get(item_id, UNKNOWN),
                spot_name=store.get("spot_name") or UNKNOWN,
                spot_area=store.get("spot_area") or UNKNOWN,
                spot_city=store.get("spot_city") or UNKNOWN,
            ))
    return units


class BatchCoordinator:
    """
    Runs probes chunk by chunk: concurrent inside a chunk, chunks strictly in
    order, with a fixed cooldown between chunks.
    """

    def __init__(self, prober: ExternalProber, config: Optional[PipelineConfig] = None, sleep: Sleep = asyncio.sleep):
        self.prober = prober
        self.config = config or PipelineConfig()
        self.sleep = sleep

    async def _run_chunk(self, chunk: Sequence[WorkUnit]) -> List[ProbeOutcome]:
        sem = asyncio.Semaphore(max(1, self.config.max_parallel))

        async def bounded(unit: WorkUnit) -> ProbeOutcome:
            async with sem:
                return await self.prober.probe(unit)

        return await asyncio.gather(*[bounded(unit) for unit in chunk])

    async def run_batch(self, units: Sequence[WorkUnit], batch_size: Optional[int] = None) -> BatchResult:
        """
        Probe every unit and split outcomes into successes and failures.

        Args:
            units: Work units, already expanded (e.g. stores x items).
            batch_size: Chunk width; defaults to config.batch_size.

        Returns:
            BatchResult: Outcomes in input order plus the summary.
        """
        batch_size = batch_size or self.config.batch_size
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        if not units:
            logger.info("No work units to probe")
            return BatchResult.empty()

        start = time.perf_counter()
        total_chunks = (len(units) + batch_size - 1) // batch_size
        successful: List[ProbeSuccess] = []
        failed: List[ProbeFailure] = []

        for chunk_no, (start_idx, chunk) in enumerate(batch_iter(units, batch_size), start=1):
            logger.info(f"Processing batch {chunk_no} of {total_chunks} (units {start_idx}..{start_idx + len(chunk) - 1})")
            outcomes = await self._run_chunk(chunk)
            for outcome in outcomes:
                if outcome.ok:
                    successful.append(outcome)
                else:
                    failed.append(outcome)

            if chunk_no < total_chunks:
                await self.sleep(self.config.cooldown_s)

        duration = time.perf_counter() - start
        summary = BatchSummary.build(
            total=len(units),
            successful=len(successful),
            failed=len(failed),
            unrecognized=sum(1 for s in successful if not s.recognized),
            duration=duration,
        )
        logger.info(
            f"🏁 Probed {summary.total} units in {summary.duration_seconds:.2f}s: "
            f"{summary.successful} successful, {summary.failed} failed ({summary.success_rate}%)"
        )
        return BatchResult(successful=tuple(successful), failed=tuple(failed), summary=summary)
