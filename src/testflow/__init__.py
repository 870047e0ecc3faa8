"""
Testflow - sequential test workflow operator.

Drives an AnsibleTest workflow inside a cluster: one worker per step, in
order, serialized across the cluster by an exclusive execution lock.

Packages:
- testflow.core: errors, logging, settings
- testflow.status: status conditions
- testflow.execution: cluster collaborator, worker specs, exclusive lock
- testflow.orchestration: definitions, resolver, evaluator, reconciler
- testflow.cli: ``testflow`` command
"""

__version__ = "0.1.0"
