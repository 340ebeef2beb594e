"""
Kubernetes Adapter

Architectural Intent:
- Infrastructure adapter implementing ClusterPort with the official kubernetes client
- apply(): create-or-patch of Deployments (AppsV1Api) and Services (CoreV1Api)
- get_status(): reads the deployment status subresource
- The client is synchronous; every call runs in the default executor

Error Mapping:
- 400/422 from the API server: the descriptor is invalid -> ApplyRejected
- 409 (concurrent modification), 5xx, connection errors: RemoteUnreachable
  (transient; the rollout poller retries these)
- 404 on get_status: the deployment is not visible yet; reported as
  RemoteUnreachable so the poller keeps waiting instead of reading 0/0 as ready
"""

from __future__ import annotations
import asyncio
import logging
from typing import Any, Callable, Optional, TypeVar

from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

from shipyard.domain.entities.descriptor import DeploymentDescriptor, DescriptorKind
from shipyard.domain.errors import ApplyRejected, RemoteUnreachable
from shipyard.domain.ports.cluster_port import ClusterPort, DeploymentState

logger = logging.getLogger(__name__)

T = TypeVar("T")

_REJECTION_STATUSES = (400, 422)


class KubernetesAdapter(ClusterPort):
    def __init__(
        self,
        namespace: str = "default",
        kubeconfig: str = "",
        context: Optional[str] = None,
        apps_api: Any = None,
        core_api: Any = None,
    ) -> None:
        self.namespace = namespace
        self.kubeconfig = kubeconfig
        self.context = context or None
        self._apps_api = apps_api
        self._core_api = core_api
        # deployment name -> namespace it was last applied to
        self._namespaces: dict[str, str] = {}

    def connect(self) -> None:
        """Loads cluster credentials: explicit kubeconfig, in-cluster, then default."""
        if self._apps_api is not None and self._core_api is not None:
            return

        from kubernetes import client
        from kubernetes import config as k8s_config

        if self.kubeconfig:
            k8s_config.load_kube_config(config_file=self.kubeconfig, context=self.context)
            logger.info("Loaded kubeconfig %s", self.kubeconfig)
        else:
            try:
                k8s_config.load_incluster_config()
                logger.info("Loaded in-cluster configuration")
            except k8s_config.ConfigException:
                k8s_config.load_kube_config(context=self.context)
                logger.info("Loaded default kubeconfig")

        self._apps_api = self._apps_api or client.AppsV1Api()
        self._core_api = self._core_api or client.CoreV1Api()

    async def apply(self, descriptor: DeploymentDescriptor) -> str:
        namespace = descriptor.namespace or self.namespace
        body = descriptor.document
        key = f"{descriptor.kind.value}/{descriptor.name}"

        if descriptor.kind is DescriptorKind.DEPLOYMENT:
            self._namespaces[descriptor.name] = namespace
            read, create, patch = (
                lambda: self._apps().read_namespaced_deployment(descriptor.name, namespace),
                lambda: self._apps().create_namespaced_deployment(namespace, body),
                lambda: self._apps().patch_namespaced_deployment(descriptor.name, namespace, body),
            )
        else:
            read, create, patch = (
                lambda: self._core().read_namespaced_service(descriptor.name, namespace),
                lambda: self._core().create_namespaced_service(namespace, body),
                lambda: self._core().patch_namespaced_service(descriptor.name, namespace, body),
            )

        def _apply() -> str:
            try:
                try:
                    read()
                except ApiException as e:
                    if e.status != 404:
                        raise
                    create()
                    return "created"
                patch()
                return "configured"
            except ApiException as e:
                if e.status in _REJECTION_STATUSES:
                    raise ApplyRejected(
                        f"{key} rejected ({e.status}): {e.reason}", descriptor_name=key
                    ) from e
                raise RemoteUnreachable(f"apply {key}: {e.status} {e.reason}") from e
            except HTTPError as e:
                raise RemoteUnreachable(f"apply {key}: {e}") from e

        return await self._run(_apply)

    async def get_status(self, name: str) -> DeploymentState:
        namespace = self._namespaces.get(name, self.namespace)

        def _status() -> DeploymentState:
            try:
                deployment = self._apps().read_namespaced_deployment_status(
                    name, namespace
                )
            except ApiException as e:
                raise RemoteUnreachable(f"status {name}: {e.status} {e.reason}") from e
            except HTTPError as e:
                raise RemoteUnreachable(f"status {name}: {e}") from e
            return self._to_state(name, deployment)

        return await self._run(_status)

    @staticmethod
    def _to_state(name: str, deployment: Any) -> DeploymentState:
        spec = deployment.spec
        status = deployment.status
        metadata = getattr(deployment, "metadata", None)
        generation = (getattr(metadata, "generation", None) or 0) if metadata else 0
        observed_generation = (
            (getattr(status, "observed_generation", None) or 0) if status else 0
        )
        desired = spec.replicas if spec and spec.replicas is not None else 1
        conditions = tuple(
            f"{c.type}={c.status}" + (f" ({c.reason})" if c.reason else "")
            for c in ((status.conditions if status else None) or [])
        )
        return DeploymentState(
            name=name,
            desired_replicas=desired,
            ready_replicas=(status.ready_replicas or 0) if status else 0,
            observed_replicas=(status.updated_replicas or 0) if status else 0,
            conditions=conditions,
            generation_observed=observed_generation >= generation,
        )

    def _apps(self) -> Any:
        if self._apps_api is None:
            self.connect()
        return self._apps_api

    def _core(self) -> Any:
        if self._core_api is None:
            self.connect()
        return self._core_api

    async def _run(self, fn: Callable[[], T]) -> T:
        return await asyncio.get_running_loop().run_in_executor(None, fn)
