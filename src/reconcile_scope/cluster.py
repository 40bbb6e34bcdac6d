"""Cluster scope: the owning cluster handle shared by machine scopes."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass

from .errors import InvalidParamsError
from .models import CLUSTER_NAME_LABEL, Cluster, ProviderMachine, ResourceKind
from .store import ResourceStore

logger = logging.getLogger(__name__)


@dataclass
class ClusterScopeParams:
    """Inputs for ClusterScope."""

    store: ResourceStore | None
    cluster: Cluster | None
    machine_kind: ResourceKind | None


class ClusterScope:
    """Read-only view of a cluster for the machine scopes that belong to it.

    Machine scopes only use it to enumerate sibling machines; it is safe to
    share one instance between concurrent passes because it holds no
    mutable state.
    """

    def __init__(self, params: ClusterScopeParams) -> None:
        if params.store is None:
            raise InvalidParamsError("cluster scope params lack a store")
        if params.cluster is None:
            raise InvalidParamsError("cluster scope params lack a Cluster API cluster")
        if params.machine_kind is None:
            raise InvalidParamsError("cluster scope params lack a machine kind")

        self._store = params.store
        self._machine_kind = params.machine_kind
        self.cluster = params.cluster

    @property
    def name(self) -> str:
        return self.cluster.metadata.name

    @property
    def namespace(self) -> str:
        return self.cluster.metadata.namespace

    @property
    def machine_kind(self) -> ResourceKind:
        return self._machine_kind

    async def list_machines(
        self, match_labels: Mapping[str, str] | None = None
    ) -> list[ProviderMachine]:
        """List provider machines of this cluster.

        The cluster-name label is always added and overrides a caller value
        for the same key, so the result never leaves the cluster.
        """
        labels = dict(match_labels or {})
        labels[CLUSTER_NAME_LABEL] = self.name

        items = await self._store.list(self.namespace, self._machine_kind, labels)
        logger.debug(
            "Listed machines",
            extra={"cluster": self.name, "namespace": self.namespace, "count": len(items)},
        )
        return [ProviderMachine.model_validate(item) for item in items]
