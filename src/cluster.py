"""Cluster adapter over the official Kubernetes Python client.

Provides the readiness polls and namespace CRUD the installer needs. A
Cluster is constructed explicitly once per command (Cluster.connect) and
handed to whoever needs it; there is no module-level client cache.

Every wait shares one contract (poll): evaluate the condition immediately,
then every poll_interval seconds until it holds or the timeout elapses, in
which case WaitTimeoutError is raised. A 404 while waiting means "not there
yet"; any other API error aborts the wait.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from kubernetes import client
from kubernetes import config as kube_config
from kubernetes.client.rest import ApiException

from config import InstallerConfig
from installer.context import DeadlineExceededError, RunContext

logger = logging.getLogger(__name__)

# Upper bound for a single API request
REQUEST_TIMEOUT = 30.0


class ClusterError(Exception):
    """A cluster API call failed."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class NotFoundError(ClusterError):
    """The requested object does not exist."""


class AlreadyExistsError(ClusterError):
    """The object to create already exists."""


class WaitTimeoutError(ClusterError):
    """A readiness condition did not hold within its timeout."""


@dataclass
class NamespaceMeta:
    """Labels and annotations of a namespace."""
    name: str
    labels: dict = field(default_factory=dict)
    annotations: dict = field(default_factory=dict)


def _translate(e: ApiException, what: str) -> ClusterError:
    """Map an API exception to the adapter's error types."""
    message = f"{what}: {e.status} {e.reason}"
    if e.status == 404:
        return NotFoundError(message, status=e.status)
    if e.status == 409:
        return AlreadyExistsError(message, status=e.status)
    return ClusterError(message, status=e.status)


def _condition_true(conditions, condition_type: str) -> bool:
    for cond in conditions or []:
        if cond.type == condition_type:
            return cond.status == 'True'
    return False


class Cluster:
    """Handle to one Kubernetes cluster.

    Attributes:
        core_v1: CoreV1Api (pods, services, namespaces)
        batch_v1: BatchV1Api (jobs)
        apiextensions_v1: ApiextensionsV1Api (CRDs)
        poll_interval: Seconds between condition evaluations
    """

    def __init__(self, core_v1, batch_v1, apiextensions_v1, poll_interval: float = 1.0):
        self.core_v1 = core_v1
        self.batch_v1 = batch_v1
        self.apiextensions_v1 = apiextensions_v1
        self.poll_interval = poll_interval

    @classmethod
    def connect(cls, settings: InstallerConfig) -> 'Cluster':
        """Build a Cluster from in-cluster config or a kubeconfig.

        In-cluster service account config is tried first unless a
        kubeconfig or context was requested explicitly.
        """
        api_client = None
        if not settings.kubeconfig and not settings.kube_context:
            configuration = client.Configuration()
            try:
                kube_config.load_incluster_config(client_configuration=configuration)
                api_client = client.ApiClient(configuration=configuration)
                logger.debug("Using in-cluster configuration")
            except kube_config.ConfigException:
                api_client = None

        if api_client is None:
            try:
                api_client = kube_config.new_client_from_config(
                    config_file=settings.kubeconfig,
                    context=settings.kube_context,
                )
            except (kube_config.ConfigException, OSError) as e:
                raise ClusterError(f"Cannot load kubeconfig: {e}")
            logger.debug(
                f"Using kubeconfig {settings.kubeconfig or '(default)'} "
                f"context {settings.kube_context or '(current)'}"
            )

        return cls(
            core_v1=client.CoreV1Api(api_client),
            batch_v1=client.BatchV1Api(api_client),
            apiextensions_v1=client.ApiextensionsV1Api(api_client),
            poll_interval=settings.poll_interval,
        )

    def _request_timeout(self, ctx: RunContext) -> float:
        timeout = ctx.bound(REQUEST_TIMEOUT)
        if timeout <= 0:
            raise DeadlineExceededError("run deadline exceeded")
        return timeout

    def poll(
        self,
        ctx: RunContext,
        timeout: float,
        condition: Callable[[], bool],
        description: str,
    ) -> None:
        """Evaluate condition now and every poll_interval until true.

        Raises:
            WaitTimeoutError: If condition is still false after timeout
            ContextError: If the run is cancelled or past its deadline
            ClusterError: If the condition raises an API error
        """
        start = time.monotonic()
        while True:
            ctx.check()
            if condition():
                logger.debug(f"Condition met: {description}")
                return
            elapsed = time.monotonic() - start
            if elapsed >= timeout:
                raise WaitTimeoutError(
                    f"Timed out after {timeout:.0f}s waiting for {description}"
                )
            ctx.sleep(min(self.poll_interval, timeout - elapsed))

    # Readiness polls

    def _list_pods(self, ctx: RunContext, namespace: str, selector: str) -> list:
        try:
            pods = self.core_v1.list_namespaced_pod(
                namespace,
                label_selector=selector,
                _request_timeout=self._request_timeout(ctx),
            )
        except ApiException as e:
            raise _translate(e, f"listing pods '{selector}' in {namespace}")
        return pods.items or []

    def wait_for_pod_by_selector(
        self, ctx: RunContext, namespace: str, selector: str, timeout: float
    ) -> None:
        """Wait until pods matching selector exist and all of them are ready.

        Existence is awaited first: during a rollout an early list may see
        no pods at all.
        """
        logger.info(f"Waiting for pods '{selector}' in {namespace}")
        self.poll(
            ctx, timeout,
            lambda: len(self._list_pods(ctx, namespace, selector)) > 0,
            f"pods '{selector}' to exist in {namespace}",
        )

        def all_ready() -> bool:
            pods = self._list_pods(ctx, namespace, selector)
            if not pods:
                return False
            return all(
                _condition_true(pod.status.conditions if pod.status else None, 'Ready')
                for pod in pods
            )

        self.poll(ctx, timeout, all_ready, f"pods '{selector}' to be ready in {namespace}")

    def wait_until_service_has_load_balancer(
        self, ctx: RunContext, namespace: str, name: str, timeout: float
    ) -> None:
        """Wait until the service reports at least one load balancer ingress."""
        logger.info(f"Waiting for load balancer on service {namespace}/{name}")

        def has_ingress() -> bool:
            try:
                service = self.core_v1.read_namespaced_service(
                    name, namespace, _request_timeout=self._request_timeout(ctx),
                )
            except ApiException as e:
                if e.status == 404:
                    return False
                raise _translate(e, f"reading service {namespace}/{name}")
            lb = service.status.load_balancer if service.status else None
            return bool(lb and lb.ingress)

        self.poll(ctx, timeout, has_ingress, f"load balancer on service {namespace}/{name}")

    def wait_for_crd(self, ctx: RunContext, name: str, timeout: float) -> None:
        """Wait until the CRD exists and reports the Established condition."""
        logger.info(f"Waiting for CRD {name}")

        def established() -> bool:
            try:
                crd = self.apiextensions_v1.read_custom_resource_definition(
                    name, _request_timeout=self._request_timeout(ctx),
                )
            except ApiException as e:
                if e.status == 404:
                    return False
                raise _translate(e, f"reading CRD {name}")
            return _condition_true(crd.status.conditions if crd.status else None, 'Established')

        self.poll(ctx, timeout, established, f"CRD {name} to be established")

    def wait_for_job_completed(
        self, ctx: RunContext, namespace: str, name: str, timeout: float
    ) -> None:
        """Wait until the job reports the Complete condition."""
        logger.info(f"Waiting for job {namespace}/{name} to complete")

        def completed() -> bool:
            try:
                job = self.batch_v1.read_namespaced_job(
                    name, namespace, _request_timeout=self._request_timeout(ctx),
                )
            except ApiException as e:
                if e.status == 404:
                    return False
                raise _translate(e, f"reading job {namespace}/{name}")
            return _condition_true(job.status.conditions if job.status else None, 'Complete')

        self.poll(ctx, timeout, completed, f"job {namespace}/{name} to complete")

    # Namespace CRUD

    def create_namespace(
        self, ctx: RunContext, name: str, labels: dict, annotations: dict
    ) -> None:
        """Create a namespace.

        Raises:
            AlreadyExistsError: If the namespace exists
        """
        ctx.check()
        body = client.V1Namespace(
            metadata=client.V1ObjectMeta(name=name, labels=labels, annotations=annotations),
        )
        try:
            self.core_v1.create_namespace(body, _request_timeout=self._request_timeout(ctx))
        except ApiException as e:
            raise _translate(e, f"creating namespace {name}")
        logger.debug(f"Created namespace {name}")

    def get_namespace(self, ctx: RunContext, name: str) -> NamespaceMeta:
        """Read a namespace's labels and annotations.

        Raises:
            NotFoundError: If the namespace does not exist
        """
        ctx.check()
        try:
            ns = self.core_v1.read_namespace(name, _request_timeout=self._request_timeout(ctx))
        except ApiException as e:
            raise _translate(e, f"reading namespace {name}")
        return NamespaceMeta(
            name=name,
            labels=dict(ns.metadata.labels or {}),
            annotations=dict(ns.metadata.annotations or {}),
        )

    def update_namespace(
        self, ctx: RunContext, name: str, labels: dict, annotations: dict
    ) -> None:
        """Replace a namespace's labels and annotations."""
        ctx.check()
        body = client.V1Namespace(
            metadata=client.V1ObjectMeta(name=name, labels=labels, annotations=annotations),
        )
        try:
            self.core_v1.replace_namespace(name, body, _request_timeout=self._request_timeout(ctx))
        except ApiException as e:
            raise _translate(e, f"updating namespace {name}")
        logger.debug(f"Updated namespace {name}")

    def delete_namespace(self, ctx: RunContext, name: str) -> None:
        """Delete a namespace.

        Raises:
            NotFoundError: If the namespace does not exist
        """
        ctx.check()
        try:
            self.core_v1.delete_namespace(name, _request_timeout=self._request_timeout(ctx))
        except ApiException as e:
            raise _translate(e, f"deleting namespace {name}")
        logger.debug(f"Deleted namespace {name}")
