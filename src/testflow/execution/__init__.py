"""Testflow Execution -- cluster access, worker runtime, exclusive lock.

Modules:
    cluster/     ClusterClient protocol and the in-memory cluster
    runtimes/    WorkerSpec / Worker types and idempotent submission
    lock.py      ExclusiveLock (cluster-wide, compare-and-set on version)
    retry.py     Backoff strategies used by the controller manager
"""
