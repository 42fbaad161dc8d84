from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple

from chainscope.config import settings
from chainscope.core.errors import ConfigError, CrawlFailedError, ProviderError
from chainscope.core.models import (
    CRAWL_CANCELLED,
    CRAWL_COMPLETED,
    CRAWL_NO_NEW_DATA,
    CRAWL_STOPPED_EARLY,
    DIRECTION_FROM,
    DIRECTION_TO,
    DIRECTIONS,
    TX_ERC20,
    TX_NATIVE,
    CrawlResult,
    GraphNode,
    LayerReport,
    TraceConfig,
    TraceSession,
    Transfer,
)
from chainscope.ports.chain_data_port import ChainDataPort
from chainscope.ports.transfer_store_port import TransferStorePort

logger = logging.getLogger(__name__)

ProgressFn = Callable[[str, Dict[str, Any]], None]
_FetchOutcome = Tuple[str, List[Transfer], Optional[BaseException]]


class CrawlerService:
    """
    Expands the known graph outward through the chain-data provider.

    - Traversal: one hop layer at a time, strictly sequential
    - Within a layer: fixed-size batches, fetched concurrently, with a delay
      between batches (provider backpressure)
    - Dedupe: never re-queries an address the session has already traced
    - Per-address failures are logged and skipped; a crawl where no fetch
      succeeded at all raises CrawlFailedError
    """

    def __init__(
        self,
        chain: ChainDataPort,
        store: TransferStorePort,
        batch_size: int = settings.CRAWL_BATCH_SIZE,
        batch_delay_sec: float = settings.CRAWL_BATCH_DELAY_SEC,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be > 0")
        self.chain = chain
        self.store = store
        self.batch_size = batch_size
        self.batch_delay_sec = batch_delay_sec
        self._sleep = sleep

    def crawl(
        self,
        targets: Iterable[str],
        cfg: TraceConfig,
        session: Optional[TraceSession] = None,
        cancel: Optional[threading.Event] = None,
        on_progress: Optional[ProgressFn] = None,
    ) -> CrawlResult:
        session = session or TraceSession()
        frontier = self._validate(targets, cfg)
        initial = list(frontier)
        progress = on_progress or _no_progress

        visited: Set[str] = set(session.traced)
        visited.update(a.lower() for a in frontier)

        collected: List[Transfer] = []
        layers: List[LayerReport] = []
        status = CRAWL_COMPLETED
        succeeded = 0
        failed = 0

        progress("start", {"targets": len(frontier), "hops": cfg.hops, "network": cfg.network})

        for layer in range(1, int(cfg.hops) + 1):
            if cancel is not None and cancel.is_set():
                status = CRAWL_CANCELLED
                logger.info("crawl cancelled before layer %d", layer)
                break
            if not frontier:
                status = CRAWL_STOPPED_EARLY
                logger.info("crawl finished at layer %d: no new frontier", layer - 1)
                break

            logger.info("scanning hop layer %d/%d (%d targets)", layer, cfg.hops, len(frontier))
            progress("layer", {"layer": layer, "hops": cfg.hops, "targets": len(frontier)})

            # addresses queried in this layer are never rediscovered by it
            visited.update(a.lower() for a in frontier)

            report, layer_transfers, discovered = self._run_layer(layer, frontier, cfg, visited, progress)
            layers.append(report)
            collected.extend(layer_transfers)
            succeeded += report.succeeded
            failed += report.failed

            frontier = discovered

        if succeeded == 0 and failed > 0:
            raise CrawlFailedError(
                f"provider unreachable: all {failed} address fetch(es) failed",
                failures=failed,
            )

        if collected:
            ingested = self.store.ingest(collected)
            new_session = session.with_traced(visited)
        elif not layers:
            # cancelled before anything was queried
            ingested = 0
            new_session = session
        else:
            ingested = 0
            new_session = session.with_traced(initial)
            status = CRAWL_NO_NEW_DATA

        result = CrawlResult(
            status=status,
            session=new_session,
            transfers=collected,
            layers=layers,
            frontier=list(frontier),
            ingested=ingested,
        )
        logger.info(
            "crawl %s: %d transfer(s), %d new, %d traced",
            status, len(collected), ingested, len(new_session.traced),
        )
        progress("done", {"status": status, "transfers": len(collected), "ingested": ingested})
        return result

    # -------------------------
    # Layer / batch execution
    # -------------------------

    def _run_layer(
        self,
        layer: int,
        frontier: List[str],
        cfg: TraceConfig,
        visited: Set[str],
        progress: ProgressFn,
    ) -> Tuple[LayerReport, List[Transfer], List[str]]:
        report = LayerReport(layer=layer, queried=len(frontier))
        layer_transfers: List[Transfer] = []
        discovered: Dict[str, None] = {}

        for start in range(0, len(frontier), self.batch_size):
            batch = frontier[start:start + self.batch_size]
            progress("batch", {"layer": layer, "offset": start, "size": len(batch), "total": len(frontier)})

            for address, txs, err in self._fetch_batch(batch, cfg):
                if err is not None:
                    report.failed += 1
                    progress("fetch_error", {"address": address, "message": str(err)})
                    continue
                report.succeeded += 1

                for tx in txs:
                    if not _type_allowed(tx, cfg):
                        continue
                    neighbor = neighbor_for(tx, address, cfg.direction)
                    if not neighbor:
                        continue
                    layer_transfers.append(tx)
                    n = neighbor.lower()
                    if n not in visited:
                        discovered[n] = None

            if start + self.batch_size < len(frontier):
                self._sleep(self.batch_delay_sec)

        report.transfers = len(layer_transfers)
        report.discovered = list(discovered)
        return report, layer_transfers, list(discovered)

    def _fetch_batch(self, batch: List[str], cfg: TraceConfig) -> List[_FetchOutcome]:
        """
        Runs every fetch in the batch in parallel and waits for all of them
        to settle. Outcomes come back in batch order.
        """
        out: List[_FetchOutcome] = []
        with ThreadPoolExecutor(max_workers=len(batch), thread_name_prefix="crawl") as ex:
            futures = [
                (address, ex.submit(self.chain.fetch_address_history, address, cfg.network, cfg.date_range))
                for address in batch
            ]
            for address, fut in futures:
                try:
                    out.append((address, list(fut.result()), None))
                except ProviderError as e:
                    logger.warning("fetch failed for %s: %s", address, e)
                    out.append((address, [], e))
                except Exception as e:
                    logger.exception("unexpected error fetching %s", address)
                    out.append((address, [], e))
        return out

    # -------------------------
    # Helpers
    # -------------------------

    def _validate(self, targets: Iterable[str], cfg: TraceConfig) -> List[str]:
        frontier = self._dedupe(targets)
        if not frontier:
            raise ConfigError("select at least one target address to trace from")
        if int(cfg.hops) < 1:
            raise ConfigError(f"hop budget must be >= 1, got {cfg.hops}")
        if cfg.direction not in DIRECTIONS:
            raise ConfigError(f"unknown direction {cfg.direction!r}; expected one of {DIRECTIONS}")
        if not cfg.include_native and not cfg.include_erc20:
            raise ConfigError("both native and erc20 transfers are excluded")
        return frontier

    @staticmethod
    def _dedupe(targets: Iterable[str]) -> List[str]:
        seen: Set[str] = set()
        out: List[str] = []
        for t in targets:
            if not t:
                continue
            key = t.lower()
            if key in seen:
                continue
            seen.add(key)
            out.append(t)
        return out


def _no_progress(event: str, data: Dict[str, Any]) -> None:
    return None


def _type_allowed(tx: Transfer, cfg: TraceConfig) -> bool:
    if tx.type == TX_NATIVE and not cfg.include_native:
        return False
    if tx.type == TX_ERC20 and not cfg.include_erc20:
        return False
    return True


def neighbor_for(tx: Transfer, address: str, direction: str) -> Optional[str]:
    """
    The counterparty of `tx` relative to the queried address, or None when
    the transfer does not match the direction filter.
    """
    current = address.lower()
    is_from = (tx.from_address or "").lower() == current
    is_to = (tx.to_address or "").lower() == current

    if direction == DIRECTION_FROM:
        return tx.to_address if is_from else None
    if direction == DIRECTION_TO:
        return tx.from_address if is_to else None
    if is_from:
        return tx.to_address
    if is_to:
        return tx.from_address
    return None


# -------------------------
# Candidate selection
# -------------------------

def select_candidates(
    nodes: Iterable[GraphNode],
    base_addresses: Iterable[str],
    session: TraceSession,
) -> List[GraphNode]:
    """
    Untraced nodes with a hop (or that are base addresses), deepest first.
    """
    bases = {b.lower() for b in base_addresses}
    pool = [n for n in nodes if n.hop is not None or n.id.lower() in bases]
    pool = [n for n in pool if not session.is_traced(n.id)]
    return sorted(pool, key=lambda n: n.hop or 0, reverse=True)


def group_candidates(candidates: Iterable[GraphNode]) -> List[Tuple[int, List[GraphNode]]]:
    groups: Dict[int, List[GraphNode]] = {}
    for n in candidates:
        groups.setdefault(n.hop or 0, []).append(n)
    return [(hop, groups[hop]) for hop in sorted(groups)]


def auto_select_targets(nodes: Iterable[GraphNode], session: TraceSession) -> List[str]:
    """
    Every untraced node at the deepest known hop; empty if none.
    """
    nodes = [n for n in nodes if n.hop is not None and not session.is_traced(n.id)]
    if not nodes:
        return []
    max_hop = max(n.hop for n in nodes)
    return [n.id for n in nodes if n.hop == max_hop]
