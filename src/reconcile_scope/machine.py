"""Machine scope: the per-pass view reconciliation logic works against.

A reconciliation pass builds one MachineScope, reads and mutates the
in-memory provider machine through it, and ends with ``finalize`` (or
``patch_object``) to persist the result. A scope is owned by exactly one
pass and is discarded afterwards; nothing is carried between passes except
what the store returns at the start of the next one.

COMMIT DEADLINE:
``patch_object`` runs its store writes under its own fixed deadline
(``patch_timeout_seconds``) inside a shielded task. Cancelling the pass
that called it does not abort the write in flight, so the final state of
an aborted reconciliation still reaches the store.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field

from .cluster import ClusterScope
from .conditions import set_summary
from .config import DEFAULT_PATCH_TIMEOUT_SECONDS, DEFAULT_PROVIDER_ID_SCHEME, Config
from .errors import InvalidParamsError, NoBootstrapDataError, RetryExhaustedError
from .models import (
    MACHINE_PROVISIONED_CONDITION,
    READY_CONDITION,
    SECRET_KIND,
    GenericMachine,
    ProviderMachine,
    Secret,
)
from .patch import PatchHelper
from .retry import DEFAULT_BACKOFF, RetryOutcome, RetryPolicy, SleepFunc, retry_on_error
from .store import ResourceStore

logger = logging.getLogger(__name__)

# Conditions the Ready summary is computed from
SUMMARY_CONDITIONS = (MACHINE_PROVISIONED_CONDITION,)

# Condition types this scope writes on every commit, over other writers' values
OWNED_CONDITIONS = (READY_CONDITION, MACHINE_PROVISIONED_CONDITION)


@dataclass
class MachineScopeParams:
    """Inputs for MachineScope.

    The first four are required; the rest default to the documented
    controller defaults.
    """

    store: ResourceStore | None
    machine: GenericMachine | None
    provider_machine: ProviderMachine | None
    cluster_scope: ClusterScope | None
    provider_id_scheme: str = DEFAULT_PROVIDER_ID_SCHEME
    patch_timeout_seconds: float = DEFAULT_PATCH_TIMEOUT_SECONDS
    retry_policy: RetryPolicy = DEFAULT_BACKOFF
    sleep: SleepFunc = field(default=asyncio.sleep)

    @classmethod
    def from_config(
        cls,
        config: Config,
        *,
        store: ResourceStore | None,
        machine: GenericMachine | None,
        provider_machine: ProviderMachine | None,
        cluster_scope: ClusterScope | None,
    ) -> MachineScopeParams:
        """Build params with the commit and retry settings from ``config``."""
        return cls(
            store=store,
            machine=machine,
            provider_machine=provider_machine,
            cluster_scope=cluster_scope,
            provider_id_scheme=config.provider_id_scheme,
            patch_timeout_seconds=config.patch_timeout_seconds,
            retry_policy=config.retry_policy(),
        )


class MachineScope:
    """Scope for reconciling one provider machine.

    Attributes:
        machine: The Cluster API machine owning the provider machine.
        provider_machine: The provider machine; mutate it in place.
        cluster_scope: Scope of the owning cluster.
    """

    def __init__(self, params: MachineScopeParams) -> None:
        if params.store is None:
            raise InvalidParamsError("machine scope params lack a store")
        if params.machine is None:
            raise InvalidParamsError("machine scope params lack a Cluster API machine")
        if params.provider_machine is None:
            raise InvalidParamsError("machine scope params lack a provider machine")
        if params.cluster_scope is None:
            raise InvalidParamsError("machine scope params need a cluster scope")

        self._store = params.store
        self._provider_id_scheme = params.provider_id_scheme
        self._patch_timeout = params.patch_timeout_seconds
        self._retry_policy = params.retry_policy
        self._sleep = params.sleep
        self._patch_helper = PatchHelper(
            params.store,
            params.provider_machine,
            params.cluster_scope.machine_kind,
            owned_conditions=OWNED_CONDITIONS,
        )
        self._inflight: asyncio.Task[None] | None = None

        self.machine = params.machine
        self.provider_machine = params.provider_machine
        self.cluster_scope = params.cluster_scope

    @property
    def key(self) -> str:
        return self.provider_machine.metadata.key

    @property
    def namespace(self) -> str:
        return self.provider_machine.metadata.namespace

    async def get_bootstrap_secret(self) -> Secret:
        """Fetch the bootstrap data secret rendered by the bootstrap provider.

        Raises:
            NoBootstrapDataError: If the machine does not reference a secret yet.
            StoreError: Propagated unchanged from the store lookup.
        """
        name = self.machine.spec.bootstrap.data_secret_name or ""
        if not name:
            raise NoBootstrapDataError(self.machine.metadata.key)

        logger.debug(
            "Searching for bootstrap data",
            extra={"machine": self.key, "secret": f"{self.namespace}/{name}"},
        )
        data = await self._store.get(self.namespace, name, SECRET_KIND)
        return Secret.model_validate(data)

    @property
    def datacenter_id(self) -> str:
        """Data center the provider machine is placed in."""
        return self.provider_machine.spec.datacenter_id

    def set_provider_id(self, provider_id: str) -> None:
        """Store ``provider_id`` as ``<scheme>://<provider_id>``.

        Only the in-memory record changes; it is persisted on commit.
        """
        self.provider_machine.spec.provider_id = f"{self._provider_id_scheme}://{provider_id}"

    async def list_machines(
        self, match_labels: Mapping[str, str] | None = None
    ) -> list[ProviderMachine]:
        """List provider machines of the same cluster, with extra labels ANDed in."""
        return await self.cluster_scope.list_machines(match_labels)

    async def count_machines(self, match_labels: Mapping[str, str] | None = None) -> int:
        return len(await self.list_machines(match_labels))

    async def find_latest_machine(
        self, match_labels: Mapping[str, str] | None = None
    ) -> ProviderMachine | None:
        """Return the most recently created sibling machine, or None.

        The scope's own machine is never returned. Equal creation times
        resolve to the machine listed later, so with ties the result depends
        on the store's list order.
        """
        machines = await self.cluster_scope.list_machines(match_labels)
        if len(machines) <= 1:
            return None

        own_key = self.key
        latest = machines[0]
        for machine in machines:
            if not machine.created_at < latest.created_at and machine.metadata.key != own_key:
                latest = machine

        if latest.metadata.key == own_key:
            return None
        return latest

    def has_failed(self) -> bool:
        """Whether a terminal failure has been recorded on the machine."""
        status = self.provider_machine.status
        return bool(status.failure_reason) or bool(status.failure_message)

    async def patch_object(self) -> None:
        """Persist all changes made to the provider machine since the scope was built.

        A commit left running by a cancelled caller is waited for first, so
        at most one write to the machine is outstanding. The Ready summary
        is then recomputed. Store errors, including conflicts, are raised
        unchanged.
        """
        if self._inflight is not None and not self._inflight.done():
            logger.debug("Waiting for previous commit", extra={"machine": self.key})
            # Outcome is logged by _log_detached_commit; a failed write stays in the diff.
            await asyncio.wait({self._inflight})

        set_summary(self.provider_machine, SUMMARY_CONDITIONS)

        self._inflight = asyncio.ensure_future(
            asyncio.wait_for(
                self._patch_helper.patch(self.provider_machine, timeout=self._patch_timeout),
                timeout=self._patch_timeout,
            )
        )
        try:
            await asyncio.shield(self._inflight)
        except asyncio.CancelledError:
            if not self._inflight.done():
                logger.warning(
                    "Reconciliation cancelled, commit continues",
                    extra={"machine": self.key, "timeout_seconds": self._patch_timeout},
                )
                self._inflight.add_done_callback(self._log_detached_commit)
            raise

    def _log_detached_commit(self, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                "Commit after cancelled reconciliation failed",
                extra={"machine": self.key, "error": str(error)},
            )
        else:
            logger.info(
                "Commit after cancelled reconciliation applied", extra={"machine": self.key}
            )

    async def finalize(self) -> None:
        """Commit with bounded exponential backoff, retrying on every error.

        Retrying only lowers the chance of a failed commit; reconciliation
        logic must still cope with a stale machine on the next pass.

        Raises:
            RetryExhaustedError: If every attempt failed.
        """
        result = await retry_on_error(
            self._retry_policy,
            lambda _: True,
            self.patch_object,
            sleep=self._sleep,
            operation_name="Machine patch",
        )
        if result.outcome is RetryOutcome.SUCCEEDED:
            return

        # Every error is retryable, so the only other outcome is EXHAUSTED.
        assert result.error is not None
        raise RetryExhaustedError(self.key, result.attempts, result.error) from result.error
