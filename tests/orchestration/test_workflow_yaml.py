"""Tests for the AnsibleTest pydantic models."""

import pytest
from pydantic import ValidationError

from testflow.orchestration.workflow_yaml import AnsibleTest, StepOverride


class TestFromYaml:
    def test_parses_smoke_definition(self, smoke_yaml_file):
        test = AnsibleTest.from_yaml(smoke_yaml_file.read_text())
        assert test.metadata.name == "smoke"
        assert test.metadata.namespace == "openstack"
        assert test.spec.container_image == "quay.io/podified/ansible-tests:base"
        assert test.spec.workflow_length == 2
        assert test.spec.workflow[1].debug is True
        assert test.spec.workflow[0].container_image is None

    def test_base_defaults(self):
        test = AnsibleTest.from_yaml("metadata:\n  name: smoke\n")
        assert test.spec.compute_ssh_key_secret_name == "dataplane-ansible-ssh-private-key-secret"
        assert test.spec.storage_class == "local-storage"
        assert test.spec.workflow == []
        assert test.metadata.uid

    def test_camel_case_aliases(self):
        test = AnsibleTest.from_yaml(
            "metadata:\n  name: smoke\n"
            "spec:\n"
            "  workloadSSHKeySecretName: workload-key\n"
            "  SELinuxLevel: s0:c1,c2\n"
            "  activeDeadlineSeconds: 600\n"
        )
        assert test.spec.workload_ssh_key_secret_name == "workload-key"
        assert test.spec.selinux_level == "s0:c1,c2"
        assert test.spec.active_deadline_seconds == 600

    def test_invalid_yaml(self):
        with pytest.raises(ValueError, match="Invalid YAML"):
            AnsibleTest.from_yaml("metadata: [unterminated")

    def test_non_mapping(self):
        with pytest.raises(ValueError, match="mapping"):
            AnsibleTest.from_yaml("- just\n- a list\n")

    def test_unknown_field_rejected(self):
        with pytest.raises(ValidationError):
            AnsibleTest.from_yaml("metadata:\n  name: smoke\nspec:\n  notAField: 1\n")

    def test_from_file(self, smoke_yaml_file):
        assert AnsibleTest.from_yaml_file(smoke_yaml_file).spec.workflow[0].step_name == "prepare"


class TestValidation:
    def test_duplicate_step_names(self, make_test):
        with pytest.raises(ValidationError, match="Duplicate step names"):
            make_test(steps=["run", "run"])

    @pytest.mark.parametrize("name", ["", "Has_Upper", "-leading", "a" * 41])
    def test_invalid_step_name(self, name):
        with pytest.raises(ValidationError):
            StepOverride(step_name=name)

    def test_invalid_instance_name(self):
        with pytest.raises(ValidationError):
            AnsibleTest.model_validate({"metadata": {"name": "Not Valid"}})

    def test_deadline_must_be_positive(self, make_test):
        with pytest.raises(ValidationError):
            make_test(activeDeadlineSeconds=0)


class TestStepNames:
    def test_named_steps(self, make_test):
        spec = make_test(steps=["prepare", "run"]).spec
        assert spec.step_name(1) == "run"

    def test_implicit_step_name(self, make_test):
        assert make_test().spec.step_name(0) == "step-0"


class TestToInstance:
    def test_new_instance_has_no_conditions(self, make_test):
        instance = make_test(steps=["run"]).to_instance()
        assert instance.key == ("openstack", "smoke")
        assert instance.conditions is None
        assert instance.spec.workflow_length == 1

    def test_status_conditions_loaded(self):
        test = AnsibleTest.model_validate(
            {
                "metadata": {"name": "smoke"},
                "status": {
                    "conditions": [
                        {
                            "type": "Ready",
                            "status": "True",
                            "reason": "Ready",
                            "message": "Setup complete",
                            "lastTransitionTime": "2026-01-01T00:00:00+00:00",
                        }
                    ]
                },
            }
        )
        assert test.to_instance().conditions.is_true("Ready")

    def test_to_yaml_round_trip(self, smoke_yaml_file):
        test = AnsibleTest.from_yaml_file(smoke_yaml_file)
        again = AnsibleTest.from_yaml(test.to_yaml())
        assert again.spec == test.spec
