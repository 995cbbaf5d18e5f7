"""Cross-adapter rename/copy built from readfile, writefile and unlink."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .operations import TRANSFER_OPERATIONS, Operation, invoke
from .permissions import READS, WRITES
from .protocol import AdapterContext

if TYPE_CHECKING:
    from collections.abc import Mapping

    from .protocol import Caller
    from .resolver import MountResolver, ResolvedMount

logger = logging.getLogger(__name__)


async def collect(stream: Any) -> bytes:
    """Drain a readfile result into a single buffer."""
    if isinstance(stream, (bytes, bytearray, memoryview)):
        return bytes(stream)
    if hasattr(stream, "__aiter__"):
        chunks = [bytes(chunk) async for chunk in stream]
        return b"".join(chunks)
    return b"".join(bytes(chunk) for chunk in stream)


@dataclass(frozen=True)
class TransferPlan:
    """A resolved cross-adapter rename or copy."""

    operation: Operation
    src_path: str
    dest_path: str
    source: ResolvedMount
    destination: ResolvedMount
    caller: Caller


class CrossAdapterOrchestrator:
    """Emulates rename/copy between mountpoints served by different adapters.

    The composite is best-effort and strictly sequential: read the source,
    write the destination, then (rename only) unlink the source. A failing
    step aborts the remaining ones and its error propagates unchanged.
    Completed steps are not rolled back, so a failed unlink after a
    successful write leaves the file in both places.
    """

    def __init__(self, resolver: MountResolver) -> None:
        self._resolver = resolver

    def plan(
        self, operation: str, fields: Mapping[str, Any], caller: Caller
    ) -> TransferPlan | None:
        """Resolve both endpoints of a rename/copy.

        Returns None when *operation* is not a transfer or when both
        paths are served by the same adapter, in which case the adapter's
        native implementation must be used. Resolution failures raise.
        """
        op = Operation.parse(operation)
        if op not in TRANSFER_OPERATIONS:
            return None

        src_path = fields.get("from")
        dest_path = fields.get("to")
        source = self._resolver.resolve(
            Operation.READFILE, {"path": src_path}, caller.groups, READS
        )
        destination = self._resolver.resolve(
            Operation.WRITEFILE, {"path": dest_path}, caller.groups, WRITES
        )

        if op is Operation.RENAME:
            # The source is removed, so it must accept unlink as a write
            self._resolver.resolve(Operation.UNLINK, {"path": src_path}, caller.groups, WRITES)

        if source.mountpoint.adapter_id == destination.mountpoint.adapter_id:
            return None

        return TransferPlan(
            operation=op,
            src_path=str(src_path),
            dest_path=str(dest_path),
            source=source,
            destination=destination,
            caller=caller,
        )

    def _context(self, resolved: ResolvedMount, caller: Caller) -> AdapterContext:
        return AdapterContext(resolved.mountpoint, caller, self._resolver.mounts)

    async def execute(self, plan: TransferPlan) -> bool:
        """Run the read → write → (unlink) pipeline for *plan*."""
        src_ctx = self._context(plan.source, plan.caller)
        dest_ctx = self._context(plan.destination, plan.caller)

        logger.debug(
            "Cross-adapter %s %s -> %s: reading source",
            plan.operation.value, plan.src_path, plan.dest_path,
        )
        stream = await invoke(
            Operation.READFILE, src_ctx, plan.source.adapter, {"path": plan.src_path}
        )
        buffer = await collect(stream)

        logger.debug("Cross-adapter %s: writing %d bytes", plan.operation.value, len(buffer))
        await invoke(
            Operation.WRITEFILE,
            dest_ctx,
            plan.destination.adapter,
            {"path": plan.dest_path},
            {"upload": buffer},
        )

        if plan.operation is Operation.RENAME:
            logger.debug("Cross-adapter rename: unlinking %s", plan.src_path)
            await invoke(
                Operation.UNLINK, src_ctx, plan.source.adapter, {"path": plan.src_path}
            )

        return True
