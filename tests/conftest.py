"""
Shared pytest fixtures for testflow tests.

This module provides:
- Operator settings with a known default image and requeue interval
- A fresh in-memory cluster per test
- AnsibleTest factories and a reconciler wired to the cluster

Usage:
    Fixtures are auto-discovered by pytest.

    @pytest.mark.asyncio
    async def test_something(cluster, reconciler, make_test):
        instance = add_instance(cluster, make_test(steps=["prepare", "run"]))
"""

from __future__ import annotations

from typing import Any

import pytest

from testflow.core.settings import OperatorSettings, reset_settings
from testflow.execution.cluster import InMemoryCluster, WorkflowInstance
from testflow.orchestration.reconciler import AnsibleTestReconciler
from testflow.orchestration.workflow_yaml import AnsibleTest

DEFAULT_IMAGE = "quay.io/podified/ansible-tests:default"
REQUEUE_SECONDS = 60.0


def build_test(
    name: str = "smoke",
    namespace: str = "openstack",
    steps: list[str] | None = None,
    overrides: dict[int, dict[str, Any]] | None = None,
    **spec: Any,
) -> AnsibleTest:
    """Build an AnsibleTest with the given step names and per-step overrides."""
    workflow = []
    for index, step_name in enumerate(steps or []):
        entry = {"stepName": step_name}
        entry.update((overrides or {}).get(index, {}))
        workflow.append(entry)
    return AnsibleTest.model_validate(
        {
            "metadata": {"name": name, "namespace": namespace},
            "spec": {"ansiblePlaybookPath": "playbooks/smoke.yaml", **spec, "workflow": workflow},
        }
    )


def add_instance(cluster: InMemoryCluster, test: AnsibleTest) -> WorkflowInstance:
    instance = test.to_instance()
    cluster.add_workflow(instance)
    return instance


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def _clean_settings_cache():
    """Drop cached settings between tests."""
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def settings() -> OperatorSettings:
    return OperatorSettings(
        requeue_after_seconds=REQUEUE_SECONDS,
        default_images={"ansibletest": DEFAULT_IMAGE},
    )


@pytest.fixture
def cluster() -> InMemoryCluster:
    return InMemoryCluster()


@pytest.fixture
def reconciler(cluster, settings) -> AnsibleTestReconciler:
    return AnsibleTestReconciler(cluster, settings=settings)


@pytest.fixture
def make_test():
    """Factory fixture for AnsibleTest definitions (see ``build_test``)."""
    return build_test


SMOKE_YAML = """\
apiVersion: test.openstack.org/v1beta1
kind: AnsibleTest
metadata:
  name: smoke
  namespace: openstack
spec:
  containerImage: quay.io/podified/ansible-tests:base
  ansibleGitRepo: https://github.com/example/ci-playbooks
  ansiblePlaybookPath: playbooks/smoke.yaml
  workflow:
    - stepName: prepare
      ansibleExtraVars: "--extra-vars prepare=true"
    - stepName: run
      containerImage: quay.io/podified/ansible-tests:debug
      debug: true
"""


@pytest.fixture
def smoke_yaml_file(tmp_path):
    path = tmp_path / "smoke.yaml"
    path.write_text(SMOKE_YAML, encoding="utf-8")
    return path


@pytest.fixture
def add_test(cluster):
    """Add an AnsibleTest to the cluster fixture and return its instance."""

    def _add(test: AnsibleTest) -> WorkflowInstance:
        return add_instance(cluster, test)

    return _add
