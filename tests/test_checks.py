#!/usr/bin/env python3
"""Tests for installer.checks - readiness check dispatch."""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

import pytest
from cluster import WaitTimeoutError
from config import InstallerConfig
from manifest import Component, ComponentAction, ComponentType, Source
from installer.checks import ComponentActions, UnknownCheckError
from installer.lifecycle import ActionError


def _helm(namespace='traefik'):
    return Component(
        id='traefik', type=ComponentType.HELM, namespace=namespace,
        source=Source(chart='traefik'),
    )


class TestComponentActionsRun:
    """Test check dispatch per check type."""

    def test_pod(self, fake_cluster, run_ctx):
        runner = ComponentActions(fake_cluster, InstallerConfig())

        runner.run(run_ctx, _helm(), ComponentAction(type='pod', selector='app=traefik'))

        assert fake_cluster.calls == [
            ('wait_for_pod_by_selector', ('traefik', 'app=traefik', 300.0)),
        ]

    def test_loadbalancer(self, fake_cluster, run_ctx):
        runner = ComponentActions(fake_cluster, InstallerConfig())

        runner.run(run_ctx, _helm(), ComponentAction(type='loadbalancer', selector='traefik'))

        assert fake_cluster.calls == [
            ('wait_until_service_has_load_balancer', ('traefik', 'traefik', 300.0)),
        ]

    def test_crd_uses_deployment_timeout(self, fake_cluster, run_ctx):
        runner = ComponentActions(fake_cluster, InstallerConfig())

        runner.run(run_ctx, _helm(), ComponentAction(type='crd', selector='certificates.cert-manager.io'))

        assert fake_cluster.calls == [('wait_for_crd', ('certificates.cert-manager.io', 600.0))]

    def test_job_uses_deployment_timeout(self, fake_cluster, run_ctx):
        runner = ComponentActions(fake_cluster, InstallerConfig())

        runner.run(run_ctx, _helm(), ComponentAction(type='job', selector='create-webhook'))

        assert fake_cluster.calls == [('wait_for_job_completed', ('traefik', 'create-webhook', 600.0))]

    def test_multiplier_applied(self, fake_cluster, run_ctx):
        runner = ComponentActions(fake_cluster, InstallerConfig(timeout_multiplier=2))

        runner.run(run_ctx, _helm(), ComponentAction(type='pod', selector='a=b'))

        assert fake_cluster.calls[0][1][2] == 600.0

    def test_check_namespace_overrides_component(self, fake_cluster, run_ctx):
        runner = ComponentActions(fake_cluster, InstallerConfig())

        runner.run(run_ctx, _helm(), ComponentAction(type='pod', selector='a=b', namespace='kube-system'))

        assert fake_cluster.calls[0][1][0] == 'kube-system'

    def test_unknown_type_is_noop(self, fake_cluster, run_ctx):
        """Unrecognized checks succeed without touching the cluster."""
        runner = ComponentActions(fake_cluster, InstallerConfig())

        runner.run(run_ctx, _helm(), ComponentAction(type='deployment', selector='x'))

        assert fake_cluster.calls == []

    def test_unknown_type_strict_raises(self, fake_cluster, run_ctx):
        runner = ComponentActions(fake_cluster, InstallerConfig(strict_checks=True))

        with pytest.raises(UnknownCheckError) as exc_info:
            runner.run(run_ctx, _helm(), ComponentAction(type='deployment', selector='x'))

        assert exc_info.value.component_id == 'traefik'
        assert "unknown check type 'deployment'" in str(exc_info.value)
        assert isinstance(exc_info.value, ActionError)
        assert fake_cluster.calls == []

    def test_adapter_error_propagates_unchanged(self, fake_cluster, run_ctx):
        error = WaitTimeoutError('Timed out')
        fake_cluster.errors['wait_for_pod_by_selector'] = error
        runner = ComponentActions(fake_cluster, InstallerConfig())

        with pytest.raises(WaitTimeoutError) as exc_info:
            runner.run(run_ctx, _helm(), ComponentAction(type='pod', selector='a=b'))

        assert exc_info.value is error
