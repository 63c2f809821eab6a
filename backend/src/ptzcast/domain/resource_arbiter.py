"""
Resource arbiter: evicts whatever process holds the camera device or a port.

Eviction is advisory. Holder discovery runs through an ordered list of
strategies (first non-empty answer wins), holders get SIGTERM, then SIGKILL if
still alive after the grace period. Nothing here raises; there is no check that
the resource is actually free afterwards.
"""

import asyncio
import os
import signal
from dataclasses import dataclass, field
from typing import Callable, List, Optional
from ..ports.holder_discovery_port import HolderDiscoveryStrategy, ResourceId
from ..services.logging_service import LoggingService


@dataclass
class EvictionReport:
    """What an eviction attempt found and did."""
    resource: ResourceId
    strategy: Optional[str] = None
    pids: List[int] = field(default_factory=list)
    terminated: List[int] = field(default_factory=list)
    killed: List[int] = field(default_factory=list)

    def to_dict(self):
        return {
            "resource": str(self.resource),
            "strategy": self.strategy,
            "pids": self.pids,
            "terminated": self.terminated,
            "killed": self.killed,
        }


class ResourceArbiter:
    """Frees devices and ports by terminating their current holders."""

    def __init__(
        self,
        strategies: List[HolderDiscoveryStrategy],
        logger: LoggingService,
        grace_period: float = 1.0,
        kill: Callable[[int, int], None] = os.kill,
        own_pid: Optional[int] = None,
    ):
        self.strategies = list(strategies)
        self.logger = logger
        self.grace_period = grace_period
        self._kill = kill
        self.own_pid = own_pid if own_pid is not None else os.getpid()

    async def free_device(self, device_path: str) -> EvictionReport:
        return await self.free(ResourceId.device(device_path))

    async def free_port(self, port: int) -> EvictionReport:
        return await self.free(ResourceId.port(port))

    async def free(self, resource: ResourceId) -> EvictionReport:
        """Evict the holders of a resource. Always returns after the grace period."""
        report = EvictionReport(resource=resource)
        try:
            await self._discover(report)
            if report.pids:
                self.logger.info(
                    f"[Arbiter] {resource} held by {report.pids} (via {report.strategy}), terminating"
                )
                report.terminated = self._signal_all(report.pids, signal.SIGTERM)
            else:
                self.logger.debug(f"[Arbiter] No holders found for {resource}")
            await asyncio.sleep(self.grace_period)
            survivors = [pid for pid in report.terminated if self._is_alive(pid)]
            if survivors:
                self.logger.warning(f"[Arbiter] {resource} holders {survivors} ignored SIGTERM, killing")
                report.killed = self._signal_all(survivors, signal.SIGKILL)
        except Exception as e:
            self.logger.error(f"[Arbiter] Eviction of {resource} failed: {e}")
        return report

    async def _discover(self, report: EvictionReport):
        for strategy in self.strategies:
            try:
                pids = await strategy.find_holders(report.resource)
            except Exception as e:
                self.logger.debug(f"[Arbiter] {strategy.name} failed for {report.resource}: {e}")
                continue
            pids = sorted({pid for pid in pids if pid > 0 and pid != self.own_pid})
            if pids:
                report.strategy = strategy.name
                report.pids = pids
                return

    def _signal_all(self, pids: List[int], sig: int) -> List[int]:
        """Signal each PID; returns the ones that were signalled."""
        signalled = []
        for pid in pids:
            try:
                self._kill(pid, sig)
                signalled.append(pid)
            except ProcessLookupError:
                self.logger.debug(f"[Arbiter] PID {pid} already exited")
            except OSError as e:
                self.logger.warning(f"[Arbiter] Could not signal PID {pid}: {e}")
        return signalled

    def _is_alive(self, pid: int) -> bool:
        try:
            self._kill(pid, 0)
            return True
        except ProcessLookupError:
            return False
        except OSError:
            # Exists but owned by someone else
            return True
