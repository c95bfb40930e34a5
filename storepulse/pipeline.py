"""
Entry point used by the CLI and the scheduler to run one check end to end:
load units -> probe in batches -> reconcile -> report.
"""
import asyncio
from typing import List, Optional, Set, Union
from loguru import logger

from storepulse.batching import BatchCoordinator, build_store_item_units
from storepulse.clients import InstamartClient
from storepulse.config import ITEM_LIST_CSV, LOCATIONS_CSV, REQUESTS_PER_SECOND, PipelineConfig
from storepulse.errors import CheckInProgressError, UnitLoadError
from storepulse.fallback import FallbackGenerator, RandomFallbackGenerator
from storepulse.models import CheckKind, FinalReport, PipelineOptions, WorkUnit, now_iso
from storepulse.prober import ExternalProber
from storepulse.reconciler import ResultReconciler
from storepulse.sources import load_item_list, load_locations, load_serviceable_stores
from storepulse.storage import RecordStore, get_default_store

# Kinds with a run in flight. Check-and-add happens without an await in between,
# so this is safe on a single event loop.
_running: Set[CheckKind] = set()


async def load_units(
    kind: CheckKind,
    options: PipelineOptions,
    store: RecordStore,
    locations_csv: str = LOCATIONS_CSV,
    item_list_csv: str = ITEM_LIST_CSV,
) -> List[WorkUnit]:
    """
    Read this run's work units. Any failure raises UnitLoadError; there is no partial list.
    """
    if kind is CheckKind.SERVICEABILITY:
        locations = load_locations(locations_csv)
        if options.explicit_unit_ids:
            wanted = set(options.explicit_unit_ids)
            locations = [loc for loc in locations if loc.name in wanted]
            logger.info(f"Narrowed to {len(locations)} explicitly requested locations")
        return locations

    stores = await load_serviceable_stores(store)
    items = load_item_list(item_list_csv)
    units = build_store_item_units(stores, items, options.explicit_unit_ids)
    logger.info(f"Checking {len(units)} store-item combinations across {len(stores)} stores")
    return units


def _failed_report(kind: CheckKind, options: PipelineOptions, message: str, error: Exception) -> FinalReport:
    return FinalReport(
        success=False,
        kind=kind,
        message=message,
        timestamp=now_iso(),
        options=options,
        error=str(error),
    )


async def invoke_pipeline(
    kind: Union[CheckKind, str],
    options: Optional[PipelineOptions] = None,
    *,
    store: Optional[RecordStore] = None,
    client=None,
    fallback: Optional[FallbackGenerator] = None,
    config: Optional[PipelineConfig] = None,
    sleep=asyncio.sleep,
    locations_csv: str = LOCATIONS_CSV,
    item_list_csv: str = ITEM_LIST_CSV,
) -> FinalReport:
    """
    Run one serviceability or availability check.

    Args:
        kind: Which check to run.
        options: Source tag, explicit unit ids, test mode, full-data flag, batch size.
        store: Record store; defaults to the process-wide `get_default_store()`.
        client: Instamart client; one is created (and closed) when omitted.
        fallback: Fallback generator for failed probes.
        config: Batch size, per-probe timeout, cooldown, parallelism.
        sleep: Cooldown primitive, injectable for tests.

    Returns:
        FinalReport: Never raises. `success` is False only when units could not be
                     loaded, the same kind is already running, or an unexpected error occurred.
    """
    kind = CheckKind(kind)
    options = options or PipelineOptions()
    config = config or PipelineConfig()

    if kind in _running:
        logger.warning(f"{kind.value} check already in progress; skipping run from '{options.source}'")
        return _failed_report(kind, options, "check already in progress", CheckInProgressError(kind.value))
    _running.add(kind)

    owns_client = client is None
    try:
        logger.info(f"Starting {kind.value} check (source={options.source}, test_mode={options.test_mode})")
        store = store if store is not None else get_default_store()
        units = await load_units(kind, options, store, locations_csv, item_list_csv)

        if owns_client:
            client = InstamartClient(requests_per_second=REQUESTS_PER_SECOND, timeout_ms=config.api_timeout_ms)
        prober = ExternalProber(client, fallback or RandomFallbackGenerator(), config)
        coordinator = BatchCoordinator(prober, config, sleep=sleep)
        batch_result = await coordinator.run_batch(units, options.batch_size)

        report = await ResultReconciler(store).reconcile(kind, batch_result, options)
        logger.info(
            f"{kind.value} check completed: {report.summary.successful}/{report.summary.total} successful, "
            f"persisted={report.persisted}"
        )
        return report
    except UnitLoadError as e:
        logger.error(f"Failed to load work units for {kind.value} check: {e}")
        return _failed_report(kind, options, f"Failed to perform {kind.value} check", e)
    except Exception as e:
        logger.exception(f"Error during {kind.value} check: {e}")
        return _failed_report(kind, options, f"Failed to perform {kind.value} check", e)
    finally:
        _running.discard(kind)
        if owns_client and client is not None:
            await client.close()


async def perform_store_sla_check(**kwargs) -> FinalReport:
    """Serviceability check; keyword args are PipelineOptions fields plus invoke_pipeline extras."""
    options, extras = _split_options(kwargs)
    return await invoke_pipeline(CheckKind.SERVICEABILITY, options, **extras)


async def perform_item_availability_check(**kwargs) -> FinalReport:
    options, extras = _split_options(kwargs)
    return await invoke_pipeline(CheckKind.AVAILABILITY, options, **extras)


_OPTION_FIELDS = ("source", "explicit_unit_ids", "test_mode", "return_full_data", "batch_size")


def _split_options(kwargs):
    options = PipelineOptions(**{k: kwargs.pop(k) for k in _OPTION_FIELDS if k in kwargs})
    return options, kwargs
