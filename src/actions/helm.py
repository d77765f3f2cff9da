"""Helm release actions for helm components."""

import logging
import time
from dataclasses import dataclass
from typing import Optional

from common import ActionResult, run_command
from config import DEPLOYMENT_TIMEOUT
from manifest import Component, ValueType
from installer.context import RunContext

logger = logging.getLogger(__name__)


@dataclass
class HelmAction:
    """Run helm against one release per component.

    The release name is the component id and the release lives in the
    component's namespace. Readiness is left to the component's checks,
    so helm is never asked to --wait.
    """
    binary: str = 'helm'
    kubeconfig: Optional[str] = None
    kube_context: Optional[str] = None
    timeout: float = DEPLOYMENT_TIMEOUT

    def _global_args(self, component: Component) -> list[str]:
        args = []
        if component.namespace:
            args += ['--namespace', component.namespace]
        if self.kubeconfig:
            args += ['--kubeconfig', self.kubeconfig]
        if self.kube_context:
            args += ['--kube-context', self.kube_context]
        return args

    def _chart_args(self, component: Component) -> list[str]:
        source = component.source
        args = [component.id, source.chart]
        if source.repo:
            args += ['--repo', source.repo]
        if source.version:
            args += ['--version', source.version]
        for name, value in component.values_of(ValueType.SET).items():
            args += ['--set', f'{name}={value}']
        return args

    def _run(self, ctx: RunContext, component: Component, verb: str, cmd: list[str]) -> ActionResult:
        start = time.time()
        ctx.check()
        logger.info(f"[{component.id}] Running helm {verb}...")
        rc, out, err = run_command(cmd, timeout=ctx.bound(self.timeout))
        if rc != 0:
            return ActionResult(
                success=False,
                message=f"helm {verb} failed for {component.id}: {err.strip() or out.strip()}",
                duration=time.time() - start,
                output=out,
            )
        return ActionResult(
            success=True,
            message=f"helm {verb} completed for {component.id}",
            duration=time.time() - start,
            output=out,
        )

    def install(self, ctx: RunContext, component: Component) -> ActionResult:
        """Install the release, or upgrade it if it already exists."""
        cmd = [self.binary, 'upgrade', '--install', '--create-namespace']
        cmd += self._chart_args(component) + self._global_args(component)
        return self._run(ctx, component, 'install', cmd)

    def upgrade(self, ctx: RunContext, component: Component) -> ActionResult:
        """Upgrade an existing release."""
        cmd = [self.binary, 'upgrade']
        cmd += self._chart_args(component) + self._global_args(component)
        return self._run(ctx, component, 'upgrade', cmd)

    def uninstall(self, ctx: RunContext, component: Component) -> ActionResult:
        """Uninstall the release. A missing release is not an error."""
        cmd = [self.binary, 'uninstall', component.id, '--ignore-not-found']
        cmd += self._global_args(component)
        return self._run(ctx, component, 'uninstall', cmd)
