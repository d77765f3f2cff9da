"""Install, Upgrade and Uninstall actions for a single component.

Each action runs a fixed phase sequence:

    Install:   preDeploy checks -> install -> waitComplete checks
    Upgrade:   preUpgrade checks -> upgrade -> waitComplete checks
    Uninstall: preDelete checks -> uninstall

The first failing phase stops the component. Failures are raised as
ActionError naming the component and phase; a readiness timeout becomes
CheckTimeoutError.
"""

import logging
from typing import Optional, Protocol, runtime_checkable

from cluster import WaitTimeoutError
from common import ActionResult
from manifest import Component, ComponentAction, ComponentType
from installer.context import RunContext
from installer.namespace import namespace_delete, namespace_upsert

logger = logging.getLogger(__name__)


@runtime_checkable
class Action(Protocol):
    """Effect applied to one component (install, upgrade, uninstall)."""

    def apply(self, ctx: RunContext, component: Component) -> None:
        """Apply the effect; raise on failure."""


class ActionError(Exception):
    """A component phase failed.

    Attributes:
        component_id: Component whose phase failed
        phase: Phase name (preDeploy, install, waitComplete, ...)
        cause: Underlying exception, if any
    """

    def __init__(
        self,
        component_id: str,
        phase: str,
        cause: Optional[BaseException] = None,
        message: Optional[str] = None,
    ):
        self.component_id = component_id
        self.phase = phase
        self.cause = cause
        detail = message or (str(cause) if cause is not None else 'failed')
        super().__init__(f"[{component_id}] {phase}: {detail}")


class CheckTimeoutError(ActionError):
    """A readiness check did not pass within its timeout."""


class CommandError(ActionError):
    """helm or kubectl exited unsuccessfully."""


def _wrap(component: Component, phase: str, e: Exception) -> ActionError:
    if isinstance(e, ActionError):
        return e
    if isinstance(e, WaitTimeoutError):
        return CheckTimeoutError(component.id, phase, e)
    return ActionError(component.id, phase, e)


class LifecycleAction:
    """Phase sequence shared by the action variants.

    Subclasses set the phase names and implement dispatch().

    Args:
        cluster: Cluster adapter (namespace operations)
        checks: ComponentActions runner for readiness checks
        helm: HelmAction for helm components
        kubectl: KubectlAction for yaml components
    """

    name = ''
    pre_phase = ''
    waits = True

    def __init__(self, cluster, checks, helm, kubectl):
        self.cluster = cluster
        self.checks = checks
        self.helm = helm
        self.kubectl = kubectl

    def pre_checks(self, component: Component) -> tuple[ComponentAction, ...]:
        raise NotImplementedError

    def dispatch(self, ctx: RunContext, component: Component) -> Optional[ActionResult]:
        raise NotImplementedError

    def _run_checks(
        self,
        ctx: RunContext,
        component: Component,
        phase: str,
        checks: tuple[ComponentAction, ...],
    ) -> None:
        for check in checks:
            logger.debug(f"[{component.id}] {phase}: {check.type} '{check.selector}'")
            try:
                self.checks.run(ctx, component, check)
            except Exception as e:
                raise _wrap(component, phase, e) from e

    def apply(self, ctx: RunContext, component: Component) -> None:
        """Run the phase sequence for one component.

        Raises:
            ActionError: If any phase fails (CheckTimeoutError for timeouts,
                CommandError for a failed helm/kubectl run)
        """
        logger.info(f"[{component.id}] {self.name} ({component.type.value})")
        self._run_checks(ctx, component, self.pre_phase, self.pre_checks(component))

        try:
            result = self.dispatch(ctx, component)
        except Exception as e:
            raise _wrap(component, self.name, e) from e
        if result is not None and not result.success:
            raise CommandError(component.id, self.name, message=result.message)

        if self.waits:
            self._run_checks(ctx, component, 'waitComplete', component.wait_complete)
        logger.info(f"[{component.id}] {self.name} done")


class Install(LifecycleAction):
    """Bring a component up (safe to repeat)."""

    name = 'install'
    pre_phase = 'preDeploy'

    def pre_checks(self, component):
        return component.pre_deploy

    def dispatch(self, ctx, component):
        if component.type == ComponentType.HELM:
            return self.helm.install(ctx, component)
        if component.type == ComponentType.YAML:
            return self.kubectl.apply(ctx, component)
        namespace_upsert(ctx, self.cluster, component)
        return None


class Upgrade(LifecycleAction):
    """Move an installed component to its manifest definition."""

    name = 'upgrade'
    pre_phase = 'preUpgrade'

    def pre_checks(self, component):
        return component.pre_upgrade

    def dispatch(self, ctx, component):
        if component.type == ComponentType.HELM:
            return self.helm.upgrade(ctx, component)
        if component.type == ComponentType.YAML:
            return self.kubectl.apply(ctx, component)
        namespace_upsert(ctx, self.cluster, component)
        return None


class Uninstall(LifecycleAction):
    """Remove a component. Anything already gone counts as removed."""

    name = 'uninstall'
    pre_phase = 'preDelete'
    waits = False

    def pre_checks(self, component):
        return component.pre_delete

    def dispatch(self, ctx, component):
        if component.type == ComponentType.HELM:
            return self.helm.uninstall(ctx, component)
        if component.type == ComponentType.YAML:
            return self.kubectl.delete(ctx, component)
        namespace_delete(ctx, self.cluster, component)
        return None
