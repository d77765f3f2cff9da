"""kubectl actions for yaml components."""

import logging
import time
from dataclasses import dataclass
from typing import Optional

from common import ActionResult, run_command
from config import DEPLOYMENT_TIMEOUT
from manifest import Component
from installer.context import RunContext

logger = logging.getLogger(__name__)


@dataclass
class KubectlAction:
    """Apply or delete a component's YAML resources with kubectl -f."""
    binary: str = 'kubectl'
    kubeconfig: Optional[str] = None
    kube_context: Optional[str] = None
    timeout: float = DEPLOYMENT_TIMEOUT

    def _command(self, verb: str, component: Component) -> list[str]:
        cmd = [self.binary, verb, '-f', component.source.location]
        if component.namespace:
            cmd += ['--namespace', component.namespace]
        if self.kubeconfig:
            cmd += ['--kubeconfig', self.kubeconfig]
        if self.kube_context:
            cmd += ['--context', self.kube_context]
        return cmd

    def _run(self, ctx: RunContext, component: Component, cmd: list[str]) -> ActionResult:
        start = time.time()
        verb = cmd[1]
        ctx.check()
        logger.info(f"[{component.id}] Running kubectl {verb} -f {component.source.location}")
        rc, out, err = run_command(cmd, timeout=ctx.bound(self.timeout))
        if rc != 0:
            return ActionResult(
                success=False,
                message=f"kubectl {verb} failed for {component.id}: {err.strip() or out.strip()}",
                duration=time.time() - start,
                output=out,
            )
        return ActionResult(
            success=True,
            message=f"kubectl {verb} completed for {component.id}",
            duration=time.time() - start,
            output=out,
        )

    def apply(self, ctx: RunContext, component: Component) -> ActionResult:
        return self._run(ctx, component, self._command('apply', component))

    def delete(self, ctx: RunContext, component: Component) -> ActionResult:
        """Delete the resources. Resources already gone are not an error."""
        cmd = self._command('delete', component) + ['--ignore-not-found']
        return self._run(ctx, component, cmd)
