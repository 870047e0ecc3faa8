"""Step executor — turns one step's effective parameters into a worker.

For exactly one step it produces the ordered runtime environment and the
``WorkerSpec`` (labels, mounts, resources, placement, security context).
It never talks to the cluster; the reconciler hands in the resolved
image, the logs claim name and whether the CA bundle exists.

Architecture:

    .. code-block:: text

        EffectiveStepParameters ──► prepare_env()     ordered POD_* variables
                                 └► build_worker()    WorkerSpec
                                      ├── labels       app / workflowStep / instanceName / operator
                                      ├── volumes      logs claim, SSH keys, CA bundle (if present)
                                      ├── security     uid/gid 227, privileged adds NET_ADMIN, NET_RAW
                                      └── placement    node selector, tolerations, SELinux level

    The labels are how the evaluator finds "the worker for step N of this
    instance", so every worker carries all four.

Tags:
    testflow, orchestration, worker, environment, ansible
"""

from __future__ import annotations

from testflow.core.settings import OperatorSettings, get_settings
from testflow.execution.cluster import WorkflowInstance
from testflow.execution.runtimes import (
    ResourceRequirements,
    SecurityContext,
    Toleration,
    Volume,
    VolumeMount,
    WorkerSpec,
    worker_external_name,
)
from testflow.orchestration.overrides import EffectiveStepParameters

# ── Labels ───────────────────────────────────────────────────────────────

APP_LABEL = "app"
WORKFLOW_STEP_LABEL = "workflowStep"
INSTANCE_NAME_LABEL = "instanceName"
OPERATOR_NAME_LABEL = "operator"

STEP_NAME_ANNOTATION = "test.openstack.org/step-name"

# ── Mounts ───────────────────────────────────────────────────────────────

LOGS_MOUNT_PATH = "/var/lib/AnsibleTests/external_files"
COMPUTE_SSH_KEY_PATH = "/var/lib/ansible/.ssh/compute_id"
WORKLOAD_SSH_KEY_PATH = "/var/lib/ansible/test_keypair.key"
CA_BUNDLE_MOUNTS = (
    ("/etc/pki/ca-trust/extracted/pem/tls-ca-bundle.pem", "tls-ca-bundle.pem"),
    ("/etc/pki/tls/certs/ca-bundle.crt", "tls-ca-bundle.pem"),
)

RUN_AS_USER = 227
RUN_AS_GROUP = 227
PRIVILEGED_CAPABILITIES = ("NET_ADMIN", "NET_RAW")


class AnsibleStepExecutor:
    """Builds the environment and worker spec of one AnsibleTest step."""

    def __init__(self, settings: OperatorSettings | None = None):
        self.settings = settings or get_settings()

    def prepare_env(self, params: EffectiveStepParameters) -> dict[str, str]:
        """Ordered environment of the worker container.

        ``POD_DEBUG`` is only present when debug is on; every other
        variable is always set, possibly to an empty string.
        """
        env: dict[str, str] = {}
        if params.debug:
            env["POD_DEBUG"] = "true"
        env["POD_ANSIBLE_EXTRA_VARS"] = params.ansible_extra_vars
        env["POD_ANSIBLE_FILE_EXTRA_VARS"] = params.ansible_var_files
        env["POD_ANSIBLE_INVENTORY"] = params.ansible_inventory
        env["POD_ANSIBLE_GIT_REPO"] = params.ansible_git_repo
        env["POD_ANSIBLE_PLAYBOOK"] = params.ansible_playbook_path
        env["POD_INSTALL_COLLECTIONS"] = params.ansible_collections
        return env

    def instance_selector(self, instance: WorkflowInstance) -> dict[str, str]:
        """Labels shared by every worker of ``instance``."""
        return {
            APP_LABEL: self.settings.service_name,
            INSTANCE_NAME_LABEL: instance.name,
            OPERATOR_NAME_LABEL: self.settings.operator_name,
        }

    def service_labels(self, instance: WorkflowInstance, step: int) -> dict[str, str]:
        labels = self.instance_selector(instance)
        labels[WORKFLOW_STEP_LABEL] = str(step)
        return labels

    def build_worker(
        self,
        instance: WorkflowInstance,
        params: EffectiveStepParameters,
        *,
        image: str,
        logs_claim_name: str,
        mount_certs: bool,
    ) -> WorkerSpec:
        """Worker spec for ``params.step`` of ``instance``."""
        volumes = [
            Volume(name="logs", claim_name=logs_claim_name),
            Volume(
                name="compute-ssh-secret",
                secret_name=params.compute_ssh_key_secret_name,
                default_mode=0o600,
            ),
        ]
        mounts = [
            VolumeMount(name="logs", mount_path=LOGS_MOUNT_PATH),
            VolumeMount(
                name="compute-ssh-secret",
                mount_path=COMPUTE_SSH_KEY_PATH,
                sub_path="ssh-privatekey",
                read_only=True,
            ),
        ]

        if params.workload_ssh_key_secret_name:
            volumes.append(
                Volume(
                    name="workload-ssh-secret",
                    secret_name=params.workload_ssh_key_secret_name,
                    default_mode=0o600,
                )
            )
            mounts.append(
                VolumeMount(
                    name="workload-ssh-secret",
                    mount_path=WORKLOAD_SSH_KEY_PATH,
                    sub_path="ssh-privatekey",
                    read_only=True,
                )
            )

        if mount_certs:
            volumes.append(
                Volume(
                    name="ca-certs",
                    secret_name=self.settings.ca_bundle_secret_name,
                    default_mode=0o444,
                )
            )
            mounts.extend(
                VolumeMount(name="ca-certs", mount_path=path, sub_path=sub_path, read_only=True)
                for path, sub_path in CA_BUNDLE_MOUNTS
            )

        return WorkerSpec(
            name=worker_external_name(instance.name, params.step),
            namespace=instance.namespace,
            image=image,
            owner_uid=instance.uid,
            env=self.prepare_env(params),
            labels=self.service_labels(instance, params.step),
            annotations={STEP_NAME_ANNOTATION: params.step_name},
            volumes=volumes,
            volume_mounts=mounts,
            resources=ResourceRequirements(
                limits=dict(params.resources.limits),
                requests=dict(params.resources.requests),
            ),
            node_selector=dict(params.node_selector),
            tolerations=[
                Toleration(
                    key=t.key,
                    operator=t.operator,
                    value=t.value,
                    effect=t.effect,
                    toleration_seconds=t.toleration_seconds,
                )
                for t in params.tolerations
            ],
            security_context=self._security_context(params),
            active_deadline_seconds=params.active_deadline_seconds,
        )

    def _security_context(self, params: EffectiveStepParameters) -> SecurityContext:
        if params.privileged:
            return SecurityContext(
                run_as_user=RUN_AS_USER,
                run_as_group=RUN_AS_GROUP,
                privileged=True,
                allow_privilege_escalation=True,
                capabilities_add=PRIVILEGED_CAPABILITIES,
                selinux_level=params.selinux_level or None,
            )
        return SecurityContext(
            run_as_user=RUN_AS_USER,
            run_as_group=RUN_AS_GROUP,
            selinux_level=params.selinux_level or None,
        )
