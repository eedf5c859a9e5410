"""
Kubernetes Service - access to Cluster custom resources and their member pods.

Every call is bounded by settings.k8s_request_timeout_seconds. Nothing here
retries: a failed call surfaces to the reconciliation cycle, and the next
cycle tries again from a fresh read.
"""
from typing import Any, Dict, List, Optional

from kubernetes_asyncio import client, config
from kubernetes_asyncio.client import ApiException
from kubernetes_asyncio.config import ConfigException
from pydantic import ValidationError

from pgcluster.config.logging import get_logger
from pgcluster.config.settings import Settings, settings as default_settings
from pgcluster.exceptions import (
    ClusterStatusConflictError,
    ConfigurationError,
    DeleteError,
    KubernetesError,
)
from pgcluster.models.cluster import Cluster, Member

logger = get_logger(__name__)

# Cluster status fields and their names on the custom resource
_STATUS_FIELDS = {
    "current_primary": "currentPrimary",
    "target_primary": "targetPrimary",
}


class KubernetesClientSet:
    """Container for Kubernetes API clients."""

    def __init__(self, api_client: client.ApiClient):
        self.api_client = api_client
        self.core_api = client.CoreV1Api(api_client)
        self.custom_api = client.CustomObjectsApi(api_client)

    async def close(self):
        """Close all API clients."""
        if self.api_client:
            await self.api_client.close()


class KubernetesService:
    """
    Object-store collaborator of the lifecycle core.

    Lists clusters and members, deletes pods and persistent volume claims,
    and updates the cluster status under optimistic concurrency.
    """

    def __init__(self, settings: Optional[Settings] = None, client_set: Optional[KubernetesClientSet] = None):
        self.settings = settings or default_settings
        self.client_set = client_set

    async def initialize(self) -> None:
        """
        Load the Kubernetes configuration and create the API clients.

        Raises:
            ConfigurationError: If no usable configuration can be loaded
        """
        if self.client_set is not None:
            return

        configuration = client.Configuration()
        try:
            if self.settings.k8s_in_cluster:
                config.load_incluster_config(client_configuration=configuration)
            else:
                await config.load_kube_config(
                    config_file=self.settings.kubeconfig_path,
                    client_configuration=configuration,
                )
        except (ConfigException, OSError) as e:
            raise ConfigurationError(f"Cannot load Kubernetes configuration: {e}")

        logger.info(
            "kubernetes_configuration_loaded",
            host=configuration.host,
            in_cluster=self.settings.k8s_in_cluster,
        )
        self.client_set = KubernetesClientSet(client.ApiClient(configuration=configuration))

    async def close(self) -> None:
        """Close the API clients."""
        if self.client_set is not None:
            await self.client_set.close()
            self.client_set = None

    def _clients(self) -> KubernetesClientSet:
        if self.client_set is None:
            raise ConfigurationError("Kubernetes service used before initialize()")
        return self.client_set

    @property
    def _timeout(self) -> float:
        return self.settings.k8s_request_timeout_seconds

    async def list_clusters(self, namespace: Optional[str] = None) -> List[Cluster]:
        """
        List Cluster custom resources.

        Resources that cannot be parsed are logged and skipped.

        Args:
            namespace: Namespace to list, or None for all namespaces
        """
        custom_api = self._clients().custom_api
        s = self.settings

        try:
            if namespace:
                result = await custom_api.list_namespaced_custom_object(
                    group=s.cluster_crd_group,
                    version=s.cluster_crd_version,
                    namespace=namespace,
                    plural=s.cluster_crd_plural,
                    _request_timeout=self._timeout,
                )
            else:
                result = await custom_api.list_cluster_custom_object(
                    group=s.cluster_crd_group,
                    version=s.cluster_crd_version,
                    plural=s.cluster_crd_plural,
                    _request_timeout=self._timeout,
                )
        except ApiException as e:
            logger.error("cluster_list_failed", namespace=namespace, error=e.reason, status=e.status)
            raise KubernetesError(f"Failed to list clusters: {e.reason}")

        clusters = []
        for item in result.get("items", []):
            try:
                clusters.append(Cluster.from_resource(item))
            except ValidationError as e:
                metadata = item.get("metadata", {})
                logger.warning(
                    "cluster_resource_invalid",
                    cluster=metadata.get("name"),
                    namespace=metadata.get("namespace"),
                    error=str(e),
                )
        return clusters

    async def list_members(self, cluster: Cluster) -> List[Member]:
        """List the pods belonging to a cluster."""
        label_selector = f"{self.settings.cluster_label_key}={cluster.name}"

        try:
            pods = await self._clients().core_api.list_namespaced_pod(
                namespace=cluster.namespace,
                label_selector=label_selector,
                _request_timeout=self._timeout,
            )
        except ApiException as e:
            logger.error(
                "member_list_failed",
                cluster=cluster.name,
                namespace=cluster.namespace,
                error=e.reason,
                status=e.status,
            )
            raise KubernetesError(f"Failed to list members of {cluster.name}: {e.reason}")

        return [
            Member.from_pod(pod, self.settings.postgres_container_name)
            for pod in pods.items
            # Pods already being deleted are not members any more
            if pod.metadata.deletion_timestamp is None
        ]

    async def delete_member(self, name: str, namespace: str) -> None:
        """
        Delete a member pod. A pod that is already gone counts as deleted.

        Raises:
            DeleteError: If the API refuses the delete
        """
        try:
            await self._clients().core_api.delete_namespaced_pod(
                name=name,
                namespace=namespace,
                _request_timeout=self._timeout,
            )
            logger.info("pod_deleted", pod=name, namespace=namespace)
        except ApiException as e:
            if e.status == 404:
                logger.info("pod_already_deleted", pod=name, namespace=namespace)
                return
            raise DeleteError("pod", name, str(e.reason), details={"namespace": namespace, "status": e.status})

    async def delete_storage_claim(self, name: str, namespace: str) -> None:
        """
        Delete the persistent volume claim named after a member.

        Raises:
            DeleteError: If the API refuses the delete
        """
        try:
            await self._clients().core_api.delete_namespaced_persistent_volume_claim(
                name=name,
                namespace=namespace,
                _request_timeout=self._timeout,
            )
            logger.info("pvc_deleted", pvc=name, namespace=namespace)
        except ApiException as e:
            if e.status == 404:
                logger.info("pvc_already_deleted", pvc=name, namespace=namespace)
                return
            raise DeleteError("pvc", name, str(e.reason), details={"namespace": namespace, "status": e.status})

    async def update_cluster_status(self, cluster: Cluster, **fields: Optional[str]) -> Cluster:
        """
        Update status fields of a cluster under optimistic concurrency.

        The patch carries the resourceVersion the cluster was read at, so the
        API server rejects it if anybody changed the cluster in between.

        Args:
            cluster: Cluster as read at the start of the cycle
            **fields: current_primary and/or target_primary

        Returns:
            The cluster as stored after the update

        Raises:
            ClusterStatusConflictError: If the cluster changed since it was read
            KubernetesError: If the update failed for another reason
        """
        unknown = set(fields) - set(_STATUS_FIELDS)
        if unknown:
            raise ValueError(f"Unknown cluster status fields: {sorted(unknown)}")

        body: Dict[str, Any] = {
            "status": {_STATUS_FIELDS[key]: value for key, value in fields.items()},
        }
        if cluster.resource_version:
            body["metadata"] = {"resourceVersion": cluster.resource_version}

        s = self.settings
        try:
            result = await self._clients().custom_api.patch_namespaced_custom_object_status(
                group=s.cluster_crd_group,
                version=s.cluster_crd_version,
                namespace=cluster.namespace,
                plural=s.cluster_crd_plural,
                name=cluster.name,
                body=body,
                _content_type="application/merge-patch+json",
                _request_timeout=self._timeout,
            )
        except ApiException as e:
            if e.status == 409:
                logger.warning(
                    "cluster_status_conflict",
                    cluster=cluster.name,
                    namespace=cluster.namespace,
                    resource_version=cluster.resource_version,
                )
                raise ClusterStatusConflictError(cluster.name, cluster.namespace)
            logger.error(
                "cluster_status_update_failed",
                cluster=cluster.name,
                namespace=cluster.namespace,
                error=e.reason,
                status=e.status,
            )
            raise KubernetesError(f"Failed to update status of {cluster.name}: {e.reason}")

        logger.info(
            "cluster_status_updated",
            cluster=cluster.name,
            namespace=cluster.namespace,
            **fields,
        )
        return Cluster.from_resource(result, default_image=cluster.image_name)
