"""External tool actions (helm, kubectl)."""

from actions.helm import HelmAction
from actions.kubectl import KubectlAction

__all__ = [
    'HelmAction',
    'KubectlAction',
]
