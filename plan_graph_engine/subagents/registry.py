"""
Subagent registry.

Manifests are registered as data. Implementations are resolved through an
explicit registration table mapping an entry name to its exported factories,
populated at process start. Lifecycles are created on first use and cached
for the life of the registry.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Union

from ..errors import SubagentLoadError, SubagentNotRegisteredError
from ..models import SubagentLifecycle, SubagentManifest

logger = logging.getLogger(__name__)

SubagentFactory = Callable[
    [SubagentManifest], Union[SubagentLifecycle, Awaitable[SubagentLifecycle]]
]

# Export names tried after the manifest's own export_name
CONVENTIONAL_EXPORTS = ("create_subagent", "create_lifecycle")


class SubagentRegistry:
    """Registry of subagent manifests with lazily created lifecycles."""

    def __init__(self) -> None:
        self._manifests: Dict[str, SubagentManifest] = {}
        self._entries: Dict[str, Dict[str, SubagentFactory]] = {}
        self._lifecycles: Dict[str, SubagentLifecycle] = {}
        self._inflight: Dict[str, asyncio.Task] = {}

    def register_entry(self, entry: str, exports: Dict[str, SubagentFactory]) -> None:
        """Register the factories an entry exposes, keyed by export name."""
        self._entries[entry] = dict(exports)

    def register(self, manifest: SubagentManifest) -> None:
        """Register a manifest. Re-registering an id replaces it and drops its cache."""
        if manifest.id in self._manifests:
            logger.info(f"Replacing subagent manifest {manifest.id}")
            self._lifecycles.pop(manifest.id, None)
        self._manifests[manifest.id] = manifest

    def list(self) -> List[SubagentManifest]:
        return list(self._manifests.values())

    def get(self, subagent_id: str) -> Optional[SubagentManifest]:
        return self._manifests.get(subagent_id)

    def filter_by_artifact(self, kind: str) -> List[SubagentManifest]:
        """Manifests that accept the given source kind (or accept any kind)."""
        return [
            manifest
            for manifest in self._manifests.values()
            if not manifest.consumes or kind in manifest.consumes
        ]

    def creatable_kinds(self) -> List[str]:
        kinds: List[str] = []
        for manifest in self._manifests.values():
            if manifest.creates not in kinds:
                kinds.append(manifest.creates)
        return kinds

    async def create_lifecycle(self, subagent_id: str) -> SubagentLifecycle:
        """Load a lifecycle on first use and cache it.

        Concurrent callers for the same id share one in-flight load. Failed
        loads are not cached, so a later call retries.

        Raises:
            SubagentNotRegisteredError: If no manifest has this id
            SubagentLoadError: If the entry yields no usable lifecycle
        """
        cached = self._lifecycles.get(subagent_id)
        if cached is not None:
            return cached

        manifest = self._manifests.get(subagent_id)
        if manifest is None:
            raise SubagentNotRegisteredError(subagent_id)

        task = self._inflight.get(subagent_id)
        if task is None:
            task = asyncio.ensure_future(self._load(manifest))
            self._inflight[subagent_id] = task
            task.add_done_callback(lambda done: self._finish_load(subagent_id, done))

        # A cancelled caller must not cancel the load other callers share
        return await asyncio.shield(task)

    def _finish_load(self, subagent_id: str, task: "asyncio.Future[SubagentLifecycle]") -> None:
        self._inflight.pop(subagent_id, None)
        if not task.cancelled() and task.exception() is None:
            self._lifecycles[subagent_id] = task.result()

    def _candidate_exports(self, manifest: SubagentManifest) -> List[str]:
        candidates = [manifest.export_name] if manifest.export_name else []
        candidates.extend(
            name for name in CONVENTIONAL_EXPORTS if name not in candidates
        )
        return candidates

    async def _load(self, manifest: SubagentManifest) -> SubagentLifecycle:
        attempted = self._candidate_exports(manifest)
        exports = self._entries.get(manifest.entry, {})

        for export_name in attempted:
            factory = exports.get(export_name)
            if not callable(factory):
                continue

            candidate = factory(manifest)
            if inspect.isawaitable(candidate):
                candidate = await candidate

            if isinstance(candidate, SubagentLifecycle):
                logger.info(
                    f"Loaded subagent {manifest.id} from {manifest.entry}:{export_name}"
                )
                return candidate

        raise SubagentLoadError(manifest.id, manifest.entry, attempted)
