from concurrent.futures import Executor, ThreadPoolExecutor
from typing import List, Optional, Sequence
import asyncio
import logging

from raftaudit.core.errors import NodeUnreadable
from raftaudit.core.reconciler import ClusterReport, NodeAnalysis, analyze_snapshot, reconcile
from raftaudit.collect.sources import SnapshotSource
from raftaudit.utils.config import AuditConfig
from raftaudit.utils.logging_config import add_node_context


class SnapshotCollector:
    """
    Loads and analyzes every node of a cluster in parallel.

    Each node is an independent task: its dump is read and parsed in a worker
    thread under its own timeout, so a slow or broken node only makes that node
    unreadable. ``audit`` waits for all of them before reconciling, since every
    cross-node rule needs the whole cluster.
    """

    def __init__(self, config: Optional[AuditConfig] = None):
        """
        Initialize a new collector.

        Args:
            config: Audit tunables; ``workers`` and ``parse_timeout`` apply here.
        """
        self.config = config or AuditConfig()
        self.logger = logging.getLogger("raftaudit.collector")

    async def _analyze(self, source: SnapshotSource, executor: Executor) -> NodeAnalysis:
        log = add_node_context(logging.getLogger(f"raftaudit.collector.{source.label}"),
                               node=source.label, mode=source.mode)
        timeout = self.config.parse_timeout

        try:
            snapshot = await asyncio.wait_for(source.load(executor), timeout=timeout)
        except asyncio.TimeoutError:
            log.warning(f"Timed out after {timeout:.1f}s reading {source.location}")
            return NodeAnalysis(label=source.label, mode=source.mode, source=source.location,
                                unreadable=f"timed out after {timeout:.1f}s")
        except NodeUnreadable as e:
            log.warning(f"Unreadable: {e.reason}")
            return NodeAnalysis.from_error(e, source.mode, source.location)

        log.info(f"Parsed {len(snapshot.records)} records from {snapshot.line_count} lines")

        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(executor, analyze_snapshot, snapshot, self.config)

    async def collect(self, sources: Sequence[SnapshotSource]) -> List[NodeAnalysis]:
        """
        Analyze every source concurrently.

        Args:
            sources: One source per node.

        Returns:
            One analysis per source, in input order.
        """
        executor = ThreadPoolExecutor(max_workers=self.config.workers,
                                      thread_name_prefix="raftaudit")
        try:
            results = await asyncio.gather(*(self._analyze(s, executor) for s in sources))
        finally:
            # A timed out read may still be running; do not wait for it.
            executor.shutdown(wait=False)

        self.logger.info(f"Collected {len(results)} nodes, "
                         f"{sum(1 for r in results if not r.readable)} unreadable")
        return list(results)

    async def audit(self, sources: Sequence[SnapshotSource]) -> ClusterReport:
        """
        Collect every node, then reconcile them.

        Args:
            sources: One source per node.

        Returns:
            The cluster report.
        """
        if not sources:
            raise ValueError("At least one snapshot is required")
        analyses = await self.collect(sources)
        return reconcile(analyses, self.config)
