"""Readiness checks gating component phases.

A check names a condition on the cluster (pods ready, load balancer
assigned, CRD established, job completed) and blocks until it holds or
its timeout elapses.
"""

import logging

from config import InstallerConfig
from manifest import CheckType, Component, ComponentAction
from installer.context import RunContext
from installer.lifecycle import ActionError

logger = logging.getLogger(__name__)


class UnknownCheckError(ActionError):
    """A check type is not recognized and strict checking is enabled."""


class ComponentActions:
    """Runs a component's checks against a cluster.

    Attributes:
        cluster: Cluster adapter providing the wait_* polls
        config: Installer settings (timeouts, strict_checks)
    """

    def __init__(self, cluster, config: InstallerConfig):
        self.cluster = cluster
        self.config = config

    def run(self, ctx: RunContext, component: Component, check: ComponentAction) -> None:
        """Block until the check's condition holds.

        The check's namespace overrides the component's. Unrecognized check
        types succeed without touching the cluster unless strict_checks is set.

        Raises:
            WaitTimeoutError: If the condition does not hold in time
            UnknownCheckError: If the type is unrecognized in strict mode
            ClusterError: On API failures while polling
        """
        namespace = check.namespace or component.namespace
        timeouts = self.config.timeouts
        kind = check.kind

        if kind == CheckType.POD:
            self.cluster.wait_for_pod_by_selector(ctx, namespace, check.selector, timeouts.pod_ready)
        elif kind == CheckType.LOADBALANCER:
            self.cluster.wait_until_service_has_load_balancer(
                ctx, namespace, check.selector, timeouts.service_load_balancer,
            )
        elif kind == CheckType.CRD:
            self.cluster.wait_for_crd(ctx, check.selector, timeouts.deployment)
        elif kind == CheckType.JOB:
            self.cluster.wait_for_job_completed(ctx, namespace, check.selector, timeouts.deployment)
        elif self.config.strict_checks:
            raise UnknownCheckError(
                component.id, 'check', message=f"unknown check type '{check.type}'",
            )
        else:
            logger.warning(f"[{component.id}] Ignoring unknown check type '{check.type}'")
