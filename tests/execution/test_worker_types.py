"""Tests for worker spec types, naming and redaction."""

import pytest

from testflow.execution.runtimes import (
    ResourceRequirements,
    SecurityContext,
    Toleration,
    Volume,
    VolumeMount,
    WorkerPhase,
    WorkerSpec,
    redact_spec,
    worker_external_name,
)


class TestWorkerExternalName:
    @pytest.mark.parametrize(
        "instance, step, expected",
        [
            ("smoke", 0, "smoke-s00"),
            ("smoke", 12, "smoke-s12"),
            ("Nightly Run!", 3, "nightly-run-s03"),
            ("!!!", 0, "workflow-s00"),
        ],
    )
    def test_names(self, instance, step, expected):
        assert worker_external_name(instance, step) == expected

    def test_length_capped(self):
        name = worker_external_name("a" * 80, 1)
        assert len(name) <= 63
        assert name.endswith("-s01")

    def test_deterministic(self):
        assert worker_external_name("smoke", 1) == worker_external_name("smoke", 1)


class TestWorkerPhase:
    def test_terminal(self):
        assert WorkerPhase.SUCCEEDED.is_terminal
        assert WorkerPhase.FAILED.is_terminal
        assert not WorkerPhase.PENDING.is_terminal
        assert not WorkerPhase.UNKNOWN.is_terminal


class TestSerialization:
    def test_volume_sources(self):
        assert Volume(name="logs", claim_name="smoke-logs").to_dict() == {
            "name": "logs",
            "persistentVolumeClaim": {"claimName": "smoke-logs"},
        }
        assert Volume(name="key", secret_name="s", default_mode=0o600).to_dict() == {
            "name": "key",
            "secret": {"secretName": "s", "defaultMode": 0o600},
        }

    def test_mount(self):
        mount = VolumeMount(name="key", mount_path="/k", sub_path="ssh-privatekey", read_only=True)
        assert mount.to_dict() == {
            "name": "key",
            "mountPath": "/k",
            "subPath": "ssh-privatekey",
            "readOnly": True,
        }

    def test_security_context(self):
        d = SecurityContext(
            run_as_user=227, privileged=True, capabilities_add=("NET_ADMIN",), selinux_level="s0"
        ).to_dict()
        assert d["runAsUser"] == 227
        assert d["capabilities"] == {"add": ["NET_ADMIN"]}
        assert d["seLinuxOptions"] == {"level": "s0"}
        assert "runAsGroup" not in d

    def test_spec_manifest(self):
        spec = WorkerSpec(
            name="smoke-s00",
            namespace="openstack",
            image="img",
            owner_uid="uid-1",
            env={"POD_DEBUG": "true", "POD_ANSIBLE_PLAYBOOK": "p.yaml"},
            resources=ResourceRequirements(requests={"cpu": "500m"}),
            tolerations=[Toleration(key="dedicated", operator="Exists")],
        )
        manifest = spec.to_dict()
        container = manifest["spec"]["containers"][0]
        assert [e["name"] for e in container["env"]] == ["POD_DEBUG", "POD_ANSIBLE_PLAYBOOK"]
        assert container["resources"] == {"requests": {"cpu": "500m"}}
        assert manifest["spec"]["restartPolicy"] == "Never"
        assert manifest["spec"]["tolerations"] == [{"operator": "Exists", "key": "dedicated"}]
        assert manifest["metadata"]["ownerReferences"] == [{"uid": "uid-1", "controller": True}]
        assert "activeDeadlineSeconds" not in manifest["spec"]

    def test_spec_hash_stable(self):
        a = WorkerSpec(name="w", namespace="ns", image="img", env={"A": "1"})
        b = WorkerSpec(name="w", namespace="ns", image="img", env={"A": "1"})
        assert a.spec_hash() == b.spec_hash()
        assert a.spec_hash() != WorkerSpec(name="w", namespace="ns", image="other").spec_hash()


class TestRedaction:
    def test_masks_sensitive_env(self):
        spec = WorkerSpec(
            name="w",
            namespace="ns",
            image="img",
            env={"API_TOKEN": "hunter2", "POD_ANSIBLE_PLAYBOOK": "p.yaml"},
        )
        env = {e["name"]: e["value"] for e in redact_spec(spec)["spec"]["containers"][0]["env"]}
        assert env == {"API_TOKEN": "***REDACTED***", "POD_ANSIBLE_PLAYBOOK": "p.yaml"}
        assert spec.env["API_TOKEN"] == "hunter2"
