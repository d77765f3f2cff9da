"""Shared pytest fixtures for stack-installer tests."""

import random
import sys
import threading
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from cluster import AlreadyExistsError, NamespaceMeta, NotFoundError
from manifest import Component, ComponentType


# Application stack used across tests. Every component below epinio-namespace
# depends on linkerd, directly or transitively.
STACK_MANIFEST = """
name: epinio
components:
  - id: epinio-namespace
    type: namespace
    namespace: epinio
    values:
      - {name: linkerd.io/inject, value: enabled, type: annotation}
      - {name: app.kubernetes.io/part-of, value: epinio, type: label}
  - id: linkerd
    type: helm
    namespace: linkerd
    needs: epinio-namespace
    source: {chart: linkerd2, repo: https://helm.linkerd.io/stable, version: "2.10.2"}
    waitComplete:
      - {type: pod, selector: linkerd.io/control-plane-component=controller}
  - id: traefik
    type: helm
    namespace: traefik
    needs: linkerd
    source: {chart: traefik, repo: https://helm.traefik.io/traefik, version: "10.3.0"}
    values:
      - {name: ports.web.nodePort, value: "32080"}
    waitComplete:
      - {type: pod, selector: app.kubernetes.io/name=traefik}
      - {type: loadbalancer, selector: traefik}
  - id: cert-manager
    type: helm
    namespace: cert-manager
    needs: linkerd
    source: {chart: cert-manager, repo: https://charts.jetstack.io, version: v1.5.3}
    values:
      - {name: installCRDs, value: "true"}
    waitComplete:
      - {type: crd, selector: certificates.cert-manager.io}
  - id: cluster-issuers
    type: yaml
    namespace: cert-manager
    needs: cert-manager
    source: {path: assets/cluster-issuers.yaml}
  - id: cluster-certificates
    type: yaml
    namespace: cert-manager
    needs: cluster-issuers
    source: {path: assets/cluster-certificates.yaml}
  - id: tekton
    type: yaml
    namespace: tekton-pipelines
    needs: linkerd
    source: {url: https://storage.googleapis.com/tekton-releases/pipeline/previous/v0.28.0/release.yaml}
    waitComplete:
      - {type: pod, selector: app=tekton-pipelines-controller}
  - id: tekton-pipelines
    type: yaml
    namespace: tekton-pipelines
    needs: tekton
    source: {path: assets/tekton-pipelines.yaml}
    waitComplete:
      - {type: job, selector: create-webhook}
  - id: kubed
    type: helm
    namespace: kubed
    needs: linkerd
    source: {chart: kubed, repo: https://charts.appscode.com/stable}
  - id: epinio
    type: helm
    namespace: epinio
    needs: tekton-pipelines
    source: {chart: epinio, repo: https://epinio.github.io/helm-charts}
    preUpgrade:
      - {type: pod, selector: app.kubernetes.io/name=epinio-server}
    preDelete:
      - {type: pod, selector: app.kubernetes.io/name=epinio-server}
"""

STACK_PLAN_IDS = [
    'epinio-namespace', 'linkerd', 'traefik', 'cert-manager', 'cluster-issuers',
    'cluster-certificates', 'tekton', 'tekton-pipelines', 'kubed', 'epinio',
]


def random_forest(seed, max_size=25):
    """Seeded forest of namespace components in shuffled declaration order.

    Each component needs at most one component created before it, so the
    result is always acyclic.
    """
    rng = random.Random(seed)
    size = rng.randint(1, max_size)
    components = []
    for i in range(size):
        needs = None
        if components and rng.random() < 0.7:
            needs = rng.choice(components).id
        cid = f"c{i}"
        components.append(Component(id=cid, type=ComponentType.NAMESPACE, namespace=cid, needs=needs))
    rng.shuffle(components)
    return components


@pytest.fixture
def stack_manifest_file(tmp_path):
    """Write the sample application stack manifest to a temp file."""
    path = tmp_path / 'epinio.yaml'
    path.write_text(STACK_MANIFEST)
    return path


@pytest.fixture
def stack_manifest(stack_manifest_file):
    """Loaded sample application stack manifest."""
    from manifest import load_manifest
    return load_manifest(stack_manifest_file)


class FakeCluster:
    """In-memory stand-in for cluster.Cluster.

    Records every call as (method, args) and keeps namespaces in a dict so
    create/get/update/delete behave like the real API.
    """

    def __init__(self, namespaces=None):
        self.calls = []
        self.namespaces = dict(namespaces or {})
        self.errors = {}
        self._lock = threading.Lock()

    def _record(self, method, *args):
        with self._lock:
            self.calls.append((method, args))
        if method in self.errors:
            raise self.errors[method]

    def methods(self):
        return [m for m, _ in self.calls]

    def wait_for_pod_by_selector(self, ctx, namespace, selector, timeout):
        self._record('wait_for_pod_by_selector', namespace, selector, timeout)

    def wait_until_service_has_load_balancer(self, ctx, namespace, name, timeout):
        self._record('wait_until_service_has_load_balancer', namespace, name, timeout)

    def wait_for_crd(self, ctx, name, timeout):
        self._record('wait_for_crd', name, timeout)

    def wait_for_job_completed(self, ctx, namespace, name, timeout):
        self._record('wait_for_job_completed', namespace, name, timeout)

    def create_namespace(self, ctx, name, labels, annotations):
        self._record('create_namespace', name, labels, annotations)
        if name in self.namespaces:
            raise AlreadyExistsError(f"namespace {name} exists", status=409)
        self.namespaces[name] = NamespaceMeta(name, dict(labels), dict(annotations))

    def get_namespace(self, ctx, name):
        self._record('get_namespace', name)
        if name not in self.namespaces:
            raise NotFoundError(f"namespace {name} not found", status=404)
        ns = self.namespaces[name]
        return NamespaceMeta(name, dict(ns.labels), dict(ns.annotations))

    def update_namespace(self, ctx, name, labels, annotations):
        self._record('update_namespace', name, labels, annotations)
        self.namespaces[name] = NamespaceMeta(name, dict(labels), dict(annotations))

    def delete_namespace(self, ctx, name):
        self._record('delete_namespace', name)
        if name not in self.namespaces:
            raise NotFoundError(f"namespace {name} not found", status=404)
        del self.namespaces[name]


@pytest.fixture
def fake_cluster():
    """Empty in-memory cluster."""
    return FakeCluster()


@pytest.fixture
def run_ctx():
    """Run context without deadline."""
    from installer.context import RunContext
    return RunContext()


@pytest.fixture(autouse=True)
def _isolate_config(monkeypatch, tmp_path):
    """Keep tests away from the user's config file and INSTALLER_* env vars."""
    import config
    monkeypatch.setattr(config, 'DEFAULT_CONFIG_FILE', tmp_path / 'no-such-config.yaml')
    for env_var in list(config.ARG_TO_ENV.values()) + ['INSTALLER_CONFIG']:
        monkeypatch.delenv(env_var, raising=False)
