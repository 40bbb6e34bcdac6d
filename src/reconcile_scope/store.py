"""Resource store access.

The scope layer talks to the store through the small ``ResourceStore``
protocol: point get, label-selected list and merge patch (optionally of the
status subresource). ``KubernetesResourceStore`` implements it on top of the
official ``kubernetes`` client. The client is synchronous, so every call is
run in the default executor; awaiting callers can still be cancelled or
timed out while a request is in flight.

Optimistic concurrency lives in the API server. A rejected write surfaces
here as ``ConflictError`` and is never retried at this layer.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Callable, Mapping
from typing import Any, Protocol

import kubernetes
from kubernetes.client import ApiClient, CoreV1Api, CustomObjectsApi
from kubernetes.client.exceptions import ApiException

from .config import Config, ConfigurationError
from .models import SECRET_KIND, ResourceKind

logger = logging.getLogger(__name__)

STATUS_SUBRESOURCE = "status"
MERGE_PATCH_CONTENT_TYPE = "application/merge-patch+json"

HTTP_NOT_FOUND = 404
HTTP_CONFLICT = 409


class StoreError(Exception):
    """Raised when a store request fails.

    Attributes:
        key: ``namespace/name`` (or namespace for lists) of the request.
        status: HTTP status returned by the API server, if any.
    """

    def __init__(self, message: str, *, key: str = "", status: int | None = None) -> None:
        super().__init__(message)
        self.key = key
        self.status = status


class NotFoundError(StoreError):
    """Raised when the requested object does not exist."""

    pass


class ConflictError(StoreError):
    """Raised when a write lost against a concurrent writer."""

    pass


class ResourceStore(Protocol):
    """Get/list/patch primitives the scope layer consumes."""

    async def get(self, namespace: str, name: str, kind: ResourceKind) -> dict[str, Any]: ...

    async def list(
        self,
        namespace: str,
        kind: ResourceKind,
        label_selector: Mapping[str, str] | None = None,
    ) -> list[dict[str, Any]]: ...

    async def patch(
        self,
        namespace: str,
        name: str,
        kind: ResourceKind,
        body: dict[str, Any],
        *,
        subresource: str | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]: ...


def format_label_selector(labels: Mapping[str, str] | None) -> str:
    """Render equality-based labels as a selector string (``a=b,c=d``)."""
    if not labels:
        return ""
    return ",".join(f"{key}={value}" for key, value in sorted(labels.items()))


def _translate(error: ApiException, operation: str, key: str) -> StoreError:
    message = f"{operation} {key} failed: {error.status} {error.reason}"
    if error.status == HTTP_NOT_FOUND:
        return NotFoundError(message, key=key, status=error.status)
    if error.status == HTTP_CONFLICT:
        return ConflictError(message, key=key, status=error.status)
    return StoreError(message, key=key, status=error.status)


class KubernetesResourceStore:
    """ResourceStore backed by a Kubernetes API server."""

    def __init__(self, api_client: ApiClient) -> None:
        self._api_client = api_client
        self._core = CoreV1Api(api_client)
        self._custom = CustomObjectsApi(api_client)

    async def _call(
        self,
        func: Callable[..., Any],
        *args: Any,
        operation: str,
        key: str,
        **kwargs: Any,
    ) -> Any:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))
        except ApiException as e:
            logger.debug(
                f"{operation} failed",
                extra={"key": key, "status": e.status, "reason": e.reason},
            )
            raise _translate(e, operation, key) from e

    @staticmethod
    def _check_core(kind: ResourceKind) -> None:
        if kind != SECRET_KIND:
            raise ValueError(f"unsupported core resource kind: {kind}")

    async def get(self, namespace: str, name: str, kind: ResourceKind) -> dict[str, Any]:
        key = f"{namespace}/{name}"
        if not kind.group:
            self._check_core(kind)
            secret = await self._call(
                self._core.read_namespaced_secret,
                name,
                namespace,
                operation=f"get {kind}",
                key=key,
            )
            return self._api_client.sanitize_for_serialization(secret)

        return await self._call(
            self._custom.get_namespaced_custom_object,
            kind.group,
            kind.version,
            namespace,
            kind.plural,
            name,
            operation=f"get {kind}",
            key=key,
        )

    async def list(
        self,
        namespace: str,
        kind: ResourceKind,
        label_selector: Mapping[str, str] | None = None,
    ) -> list[dict[str, Any]]:
        selector = format_label_selector(label_selector)
        if not kind.group:
            self._check_core(kind)
            result = await self._call(
                self._core.list_namespaced_secret,
                namespace,
                label_selector=selector,
                operation=f"list {kind}",
                key=namespace,
            )
            result = self._api_client.sanitize_for_serialization(result)
        else:
            result = await self._call(
                self._custom.list_namespaced_custom_object,
                kind.group,
                kind.version,
                namespace,
                kind.plural,
                label_selector=selector,
                operation=f"list {kind}",
                key=namespace,
            )
        return list(result.get("items") or [])

    async def patch(
        self,
        namespace: str,
        name: str,
        kind: ResourceKind,
        body: dict[str, Any],
        *,
        subresource: str | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        if not kind.group:
            raise ValueError(f"patching core resource kind {kind} is not supported")

        if subresource is None:
            func = self._custom.patch_namespaced_custom_object
        elif subresource == STATUS_SUBRESOURCE:
            func = self._custom.patch_namespaced_custom_object_status
        else:
            raise ValueError(f"unsupported subresource: {subresource}")

        kwargs: dict[str, Any] = {"_content_type": MERGE_PATCH_CONTENT_TYPE}
        if timeout is not None:
            kwargs["_request_timeout"] = timeout

        return await self._call(
            func,
            kind.group,
            kind.version,
            namespace,
            kind.plural,
            name,
            body,
            operation=f"patch {kind}" + (f"/{subresource}" if subresource else ""),
            key=f"{namespace}/{name}",
            **kwargs,
        )


def load_store(config: Config) -> KubernetesResourceStore:
    """Build a store from in-cluster credentials or a kubeconfig.

    Raises:
        ConfigurationError: If no usable credentials are found.
    """
    try:
        if config.in_cluster:
            kubernetes.config.load_incluster_config()
            api_client = ApiClient()
        else:
            api_client = kubernetes.config.new_client_from_config(
                config_file=str(config.kubeconfig) if config.kubeconfig else None
            )
    except kubernetes.config.config_exception.ConfigException as e:
        raise ConfigurationError(f"Could not load Kubernetes credentials: {e}") from e

    logger.info(
        "Kubernetes client configured",
        extra={"in_cluster": config.in_cluster, "host": api_client.configuration.host},
    )
    return KubernetesResourceStore(api_client)
