#!/usr/bin/env python3
"""Tests for cluster.py - polling and namespace CRUD over mocked API clients."""

import sys
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

import pytest
from kubernetes.client.rest import ApiException
from kubernetes.config import ConfigException

import cluster as cluster_module
from cluster import (
    AlreadyExistsError,
    Cluster,
    ClusterError,
    NotFoundError,
    WaitTimeoutError,
)
from config import InstallerConfig
from installer.context import CancelledError, DeadlineExceededError, RunContext


def _cluster():
    return Cluster(MagicMock(), MagicMock(), MagicMock(), poll_interval=0.01)


def _conditions(**kv):
    return [SimpleNamespace(type=t, status=s) for t, s in kv.items()]


def _pod(ready):
    return SimpleNamespace(status=SimpleNamespace(conditions=_conditions(Ready='True' if ready else 'False')))


def _pods(*pods):
    return SimpleNamespace(items=list(pods))


class TestPoll:
    """Test the shared poll loop."""

    def test_immediate_success(self, run_ctx):
        condition = MagicMock(return_value=True)

        _cluster().poll(run_ctx, 1.0, condition, 'ready')

        condition.assert_called_once()

    def test_repeats_until_true(self, run_ctx):
        condition = MagicMock(side_effect=[False, False, True])

        _cluster().poll(run_ctx, 5.0, condition, 'ready')

        assert condition.call_count == 3

    def test_timeout(self, run_ctx):
        with pytest.raises(WaitTimeoutError, match='waiting for thing'):
            _cluster().poll(run_ctx, 0.05, lambda: False, 'thing')

    def test_cancelled(self):
        ctx = RunContext()
        ctx.cancel()

        with pytest.raises(CancelledError):
            _cluster().poll(ctx, 5.0, lambda: True, 'ready')

    def test_deadline(self):
        ctx = RunContext(timeout=0.05)

        with pytest.raises(DeadlineExceededError):
            _cluster().poll(ctx, 10.0, lambda: False, 'ready')

    def test_condition_error_aborts(self, run_ctx):
        def boom():
            raise ClusterError('listing pods: 403 Forbidden', status=403)

        with pytest.raises(ClusterError, match='403'):
            _cluster().poll(run_ctx, 5.0, boom, 'ready')


class TestWaits:
    """Test readiness waits."""

    def test_pods_exist_then_ready(self, run_ctx):
        c = _cluster()
        c.core_v1.list_namespaced_pod.side_effect = [
            _pods(),
            _pods(_pod(True)),
            _pods(_pod(True), _pod(False)),
            _pods(_pod(True), _pod(True)),
        ]

        c.wait_for_pod_by_selector(run_ctx, 'traefik', 'app=traefik', 5.0)

        assert c.core_v1.list_namespaced_pod.call_count == 4
        args, kwargs = c.core_v1.list_namespaced_pod.call_args
        assert args == ('traefik',)
        assert kwargs['label_selector'] == 'app=traefik'

    def test_pods_never_appear(self, run_ctx):
        c = _cluster()
        c.core_v1.list_namespaced_pod.return_value = _pods()

        with pytest.raises(WaitTimeoutError, match='to exist'):
            c.wait_for_pod_by_selector(run_ctx, 'traefik', 'app=traefik', 0.05)

    def test_load_balancer_404_then_ingress(self, run_ctx):
        c = _cluster()
        c.core_v1.read_namespaced_service.side_effect = [
            ApiException(status=404, reason='Not Found'),
            SimpleNamespace(status=SimpleNamespace(load_balancer=SimpleNamespace(ingress=None))),
            SimpleNamespace(status=SimpleNamespace(load_balancer=SimpleNamespace(ingress=[{'ip': '10.0.0.1'}]))),
        ]

        c.wait_until_service_has_load_balancer(run_ctx, 'traefik', 'traefik', 5.0)

        assert c.core_v1.read_namespaced_service.call_count == 3

    def test_load_balancer_api_error(self, run_ctx):
        c = _cluster()
        c.core_v1.read_namespaced_service.side_effect = ApiException(status=500, reason='Internal')

        with pytest.raises(ClusterError) as exc_info:
            c.wait_until_service_has_load_balancer(run_ctx, 'traefik', 'traefik', 5.0)

        assert exc_info.value.status == 500
        assert not isinstance(exc_info.value, WaitTimeoutError)

    def test_crd_established(self, run_ctx):
        c = _cluster()
        c.apiextensions_v1.read_custom_resource_definition.side_effect = [
            ApiException(status=404, reason='Not Found'),
            SimpleNamespace(status=SimpleNamespace(conditions=_conditions(NamesAccepted='True'))),
            SimpleNamespace(status=SimpleNamespace(conditions=_conditions(NamesAccepted='True', Established='True'))),
        ]

        c.wait_for_crd(run_ctx, 'certificates.cert-manager.io', 5.0)

        assert c.apiextensions_v1.read_custom_resource_definition.call_count == 3

    def test_job_completed(self, run_ctx):
        c = _cluster()
        c.batch_v1.read_namespaced_job.side_effect = [
            SimpleNamespace(status=SimpleNamespace(conditions=None)),
            SimpleNamespace(status=SimpleNamespace(conditions=_conditions(Complete='True'))),
        ]

        c.wait_for_job_completed(run_ctx, 'tekton-pipelines', 'create-webhook', 5.0)

        assert c.batch_v1.read_namespaced_job.call_count == 2

    def test_job_failed_condition_times_out(self, run_ctx):
        c = _cluster()
        c.batch_v1.read_namespaced_job.return_value = SimpleNamespace(
            status=SimpleNamespace(conditions=_conditions(Complete='False')),
        )

        with pytest.raises(WaitTimeoutError):
            c.wait_for_job_completed(run_ctx, 'ns', 'job', 0.05)


class TestNamespaces:
    """Test namespace CRUD error mapping."""

    def test_create(self, run_ctx):
        c = _cluster()

        c.create_namespace(run_ctx, 'epinio', {'team': 'a'}, {'note': 'b'})

        body = c.core_v1.create_namespace.call_args[0][0]
        assert body.metadata.name == 'epinio'
        assert body.metadata.labels == {'team': 'a'}
        assert body.metadata.annotations == {'note': 'b'}

    def test_create_conflict(self, run_ctx):
        c = _cluster()
        c.core_v1.create_namespace.side_effect = ApiException(status=409, reason='Conflict')

        with pytest.raises(AlreadyExistsError):
            c.create_namespace(run_ctx, 'epinio', {}, {})

    def test_get(self, run_ctx):
        c = _cluster()
        c.core_v1.read_namespace.return_value = SimpleNamespace(
            metadata=SimpleNamespace(labels={'team': 'a'}, annotations=None),
        )

        meta = c.get_namespace(run_ctx, 'epinio')

        assert meta.labels == {'team': 'a'}
        assert meta.annotations == {}

    def test_update_replaces(self, run_ctx):
        c = _cluster()

        c.update_namespace(run_ctx, 'epinio', {'team': 'b'}, {})

        name, body = c.core_v1.replace_namespace.call_args[0]
        assert name == 'epinio'
        assert body.metadata.labels == {'team': 'b'}

    def test_delete_not_found(self, run_ctx):
        c = _cluster()
        c.core_v1.delete_namespace.side_effect = ApiException(status=404, reason='Not Found')

        with pytest.raises(NotFoundError):
            c.delete_namespace(run_ctx, 'epinio')

    def test_cancelled_before_request(self):
        c = _cluster()
        ctx = RunContext()
        ctx.cancel()

        with pytest.raises(CancelledError):
            c.delete_namespace(ctx, 'epinio')

        c.core_v1.delete_namespace.assert_not_called()

    def test_request_timeout_bounded_by_deadline(self):
        c = _cluster()

        timeout = c._request_timeout(RunContext(timeout=5))

        assert 0 < timeout <= 5
        assert c._request_timeout(RunContext()) == cluster_module.REQUEST_TIMEOUT

    def test_request_timeout_expired_deadline(self):
        """An exhausted deadline is never widened back to the full request timeout."""
        c = _cluster()

        with pytest.raises(DeadlineExceededError):
            c._request_timeout(RunContext(timeout=0))


class TestConnect:
    """Test Cluster.connect client construction."""

    def test_falls_back_to_kubeconfig(self):
        settings = InstallerConfig(poll_interval=2.0)
        with patch.object(cluster_module.kube_config, 'load_incluster_config',
                          side_effect=ConfigException('not in cluster')), \
             patch.object(cluster_module.kube_config, 'new_client_from_config',
                          return_value=MagicMock()) as new_client:
            c = Cluster.connect(settings)

        new_client.assert_called_once_with(config_file=None, context=None)
        assert c.poll_interval == 2.0

    def test_explicit_kubeconfig_skips_incluster(self):
        settings = InstallerConfig(kubeconfig='/tmp/kc', kube_context='dev')
        with patch.object(cluster_module.kube_config, 'load_incluster_config') as incluster, \
             patch.object(cluster_module.kube_config, 'new_client_from_config',
                          return_value=MagicMock()) as new_client:
            Cluster.connect(settings)

        incluster.assert_not_called()
        new_client.assert_called_once_with(config_file='/tmp/kc', context='dev')

    def test_kubeconfig_error(self):
        settings = InstallerConfig(kubeconfig='/tmp/missing')
        with patch.object(cluster_module.kube_config, 'new_client_from_config',
                          side_effect=ConfigException('Invalid kube-config file')):
            with pytest.raises(ClusterError, match='Cannot load kubeconfig'):
                Cluster.connect(settings)
