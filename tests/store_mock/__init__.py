"""Resource Store Mock for Testing.

This module provides an in-memory implementation of the ResourceStore
protocol so scopes can be exercised without an API server.

Key Features:
- In-memory objects keyed by kind, namespace and name
- Label-selected listing in insertion order
- Merge-patch application with resourceVersion bumps
- Error injection (conflicts, lookup failures)
- Call recording for assertions

Usage:
    from store_mock import MockResourceStore, make_provider_machine, to_wire

    store = MockResourceStore()
    store.add(PROVIDER_MACHINE_KIND, to_wire(make_provider_machine("m1")))

    await scope.patch_object()
    assert store.calls_for("patch")[0].subresource == "status"
"""

from .records import (
    T0,
    at,
    make_cluster,
    make_machine,
    make_provider_machine,
    to_wire,
)
from .store import MockResourceStore, StoreCall, apply_merge_patch, conflict

__all__ = [
    "T0",
    "MockResourceStore",
    "StoreCall",
    "apply_merge_patch",
    "at",
    "conflict",
    "make_cluster",
    "make_machine",
    "make_provider_machine",
    "to_wire",
]
