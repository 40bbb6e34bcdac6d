"""Snapshot-and-diff commit of a provider machine.

``PatchHelper`` remembers the serialized machine it was created with and,
on ``patch``, sends only what changed since then as JSON merge patches
(RFC 7386). The object (metadata and spec) and the status subresource are
separate endpoints in the store, so they are diffed and written separately,
object first.

After each part is written the snapshot for that part moves forward. A
second ``patch`` without intervening mutations therefore sends nothing, and
a retry after a partial failure only resends the part that did not land.

CONDITIONS:
A merge patch replaces lists wholesale. When conditions changed, the
latest stored conditions are read and only the condition types this helper
changed are applied on top of them, together with the owned types it
holds. Conditions other writers set in the meantime are kept.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Collection
from typing import Any

from .models import READY_CONDITION, ProviderMachine, ResourceKind
from .store import STATUS_SUBRESOURCE, ResourceStore

logger = logging.getLogger(__name__)

# Metadata fields owned by clients. Everything else is server-managed.
PATCHABLE_METADATA_FIELDS = ("labels", "annotations", "finalizers", "ownerReferences")

_MISSING = object()


def merge_patch(before: dict[str, Any], after: dict[str, Any]) -> dict[str, Any]:
    """Compute the JSON merge patch turning ``before`` into ``after``.

    Removed keys map to None. Lists are replaced wholesale.
    """
    patch: dict[str, Any] = {}
    for key in sorted(before.keys() - after.keys()):
        patch[key] = None
    for key, value in after.items():
        old = before.get(key, _MISSING)
        if old == value:
            continue
        if isinstance(old, dict) and isinstance(value, dict):
            nested = merge_patch(old, value)
            if nested:
                patch[key] = nested
        else:
            patch[key] = copy.deepcopy(value)
    return patch


def _split(machine: ProviderMachine) -> tuple[dict[str, Any], dict[str, Any]]:
    data = machine.to_object()
    metadata = data.get("metadata", {})
    obj = {
        "metadata": {k: metadata[k] for k in PATCHABLE_METADATA_FIELDS if k in metadata},
        "spec": data.get("spec", {}),
    }
    return obj, data.get("status", {})


def merge_conditions(
    before: list[dict[str, Any]],
    after: list[dict[str, Any]],
    latest: list[dict[str, Any]],
    owned: Collection[str] = (),
) -> list[dict[str, Any]]:
    """Apply the before to after condition changes onto ``latest``.

    Types whose value differs between ``before`` and ``after`` take the
    ``after`` value, or are dropped when ``after`` lacks them. Owned types
    present in ``after`` always take its value. Every other condition in
    ``latest`` is kept as stored.
    """
    before_by_type = {c["type"]: c for c in before}
    after_by_type = {c["type"]: c for c in after}
    merged = {c["type"]: c for c in latest}

    changed = {
        t
        for t in before_by_type.keys() | after_by_type.keys()
        if before_by_type.get(t) != after_by_type.get(t)
    }
    for condition_type in changed | (set(owned) & after_by_type.keys()):
        wanted = after_by_type.get(condition_type)
        if wanted is None:
            merged.pop(condition_type, None)
        else:
            merged[condition_type] = copy.deepcopy(wanted)

    return sorted(
        merged.values(), key=lambda c: (0 if c["type"] == READY_CONDITION else 1, c["type"])
    )


class PatchHelper:
    """Diffs a provider machine against its snapshot and writes the delta.

    Args:
        store: Resource store to write to.
        machine: The machine as it was read; the snapshot is taken now.
        kind: Resource coordinates of the machine.
        owned_conditions: Condition types this helper always writes its
            value for, whatever the store holds.
    """

    def __init__(
        self,
        store: ResourceStore,
        machine: ProviderMachine,
        kind: ResourceKind,
        owned_conditions: Collection[str] = (),
    ) -> None:
        self._store = store
        self._kind = kind
        self._owned_conditions = frozenset(owned_conditions)
        self._before_object, self._before_status = _split(machine)

    def changes(self, machine: ProviderMachine) -> tuple[dict[str, Any], dict[str, Any]]:
        """Return the pending (object, status) merge patches for ``machine``."""
        after_object, after_status = _split(machine)
        return (
            merge_patch(self._before_object, after_object),
            merge_patch(self._before_status, after_status),
        )

    def has_changes(self, machine: ProviderMachine) -> bool:
        object_patch, status_patch = self.changes(machine)
        return bool(object_patch or status_patch)

    async def patch(self, machine: ProviderMachine, *, timeout: float | None = None) -> None:
        """Write pending changes of ``machine`` to the store.

        Args:
            machine: Current in-memory machine.
            timeout: Per-request timeout passed to the store.

        Raises:
            ConflictError: If the store rejected a write.
            StoreError: For any other store failure.
        """
        meta = machine.metadata
        after_object, after_status = _split(machine)
        object_patch = merge_patch(self._before_object, after_object)
        status_patch = merge_patch(self._before_status, after_status)

        if not object_patch and not status_patch:
            logger.debug("Nothing to patch", extra={"key": meta.key})
            return

        if object_patch:
            result = await self._store.patch(
                meta.namespace, meta.name, self._kind, object_patch, timeout=timeout
            )
            self._before_object = after_object
            self._track_version(machine, result)

        if status_patch:
            if "conditions" in status_patch:
                status_patch["conditions"] = await self._latest_conditions(machine, after_status)
            result = await self._store.patch(
                meta.namespace,
                meta.name,
                self._kind,
                {"status": status_patch},
                subresource=STATUS_SUBRESOURCE,
                timeout=timeout,
            )
            self._before_status = after_status
            self._track_version(machine, result)

        logger.debug(
            "Patched machine",
            extra={
                "key": meta.key,
                "object_fields": sorted(object_patch),
                "status_fields": sorted(status_patch),
            },
        )

    async def _latest_conditions(
        self, machine: ProviderMachine, after_status: dict[str, Any]
    ) -> list[dict[str, Any]]:
        meta = machine.metadata
        latest = await self._store.get(meta.namespace, meta.name, self._kind)
        return merge_conditions(
            self._before_status.get("conditions") or [],
            after_status.get("conditions") or [],
            (latest.get("status") or {}).get("conditions") or [],
            self._owned_conditions,
        )

    @staticmethod
    def _track_version(machine: ProviderMachine, result: dict[str, Any] | None) -> None:
        version = ((result or {}).get("metadata") or {}).get("resourceVersion")
        if version:
            machine.metadata.resource_version = version
