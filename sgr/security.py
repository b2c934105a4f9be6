"""Keeps the firewall ACL in line with cluster membership.

Nodes in the same region reach each other by private address; nodes in other
regions reach each other by public address. Every tick re-reads the firewall
and the registry, so a failed tick is simply retried by the next one.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from threading import Lock
from typing import Iterable

from . import db
from .config import NodeConfig
from .firewall import Firewall
from .registry import ClusterMember, Registry
from .scheduler import RunState, Task, TaskTimer, once_timer, seed_timer

JOB_NAME = "update-security-group"


def as_range(address: str) -> str:
    """Single address as a CIDR range. An empty address yields '/32'."""
    return f"{address}/32"


@dataclass(frozen=True)
class LocalNode:
    app_name: str
    region: str
    hostname: str
    host_ip: str
    from_port: int
    to_port: int

    @property
    def private_range(self) -> str:
        return as_range(self.hostname)

    @property
    def public_range(self) -> str:
        return as_range(self.host_ip)

    @classmethod
    def from_config(cls, config: NodeConfig) -> "LocalNode":
        return cls(
            app_name=config.app_name,
            region=config.region,
            hostname=config.hostname,
            host_ip=config.host_ip,
            from_port=config.storage_port,
            to_port=config.ssl_storage_port,
        )


@dataclass(frozen=True)
class AclPlan:
    to_add: frozenset[str]
    to_remove: frozenset[str]
    expected: frozenset[str]

    @property
    def empty(self) -> bool:
        return not self.to_add and not self.to_remove


def expected_ranges(members: Iterable[ClusterMember], region: str) -> set[str]:
    """Ranges that membership justifies: private for same-region members, public for all."""
    out: set[str] = set()
    for m in members:
        if m.region == region:
            out.add(as_range(m.hostname))
        out.add(as_range(m.host_ip))
    return out


def add_candidates(members: Iterable[ClusterMember], local: LocalNode, current: set[str]) -> set[str]:
    """Public ranges of other members missing from the firewall.

    Private ranges of same-region peers are left to those peers' own first run.
    """
    out: set[str] = set()
    for m in members:
        if m.hostname == local.hostname:
            continue
        r = as_range(m.host_ip)
        if r not in current:
            out.add(r)
    return out


def compute_plan(
    local: LocalNode,
    members: list[ClusterMember],
    current: set[str],
    state: RunState,
    bootstrap: bool,
) -> AclPlan:
    to_add: set[str] = set()
    if bootstrap:
        to_add.update(r for r in (local.private_range, local.public_range) if r not in current)

    expected = expected_ranges(members, local.region)
    to_add |= add_candidates(members, local, current)
    to_remove = current - expected

    if state is RunState.STOPPING:
        own = {local.private_range, local.public_range}
        to_remove |= own
        to_add -= own

    return AclPlan(to_add=frozenset(to_add), to_remove=frozenset(to_remove), expected=frozenset(expected))


class SecurityReconciler(Task):
    """Reconciles the storage-port ACL. Seeds run it periodically, others once."""

    name = JOB_NAME
    run_on_stop = True

    def __init__(self, config: NodeConfig, registry: Registry, firewall: Firewall):
        self.config = config
        self.registry = registry
        self.firewall = firewall
        self._bootstrap_lock = Lock()
        self._bootstrapped = False

    @property
    def bootstrapped(self) -> bool:
        return self._bootstrapped

    def _claim_bootstrap(self) -> bool:
        with self._bootstrap_lock:
            if self._bootstrapped:
                return False
            self._bootstrapped = True
            return True

    def reconcile(self, state: RunState = RunState.RUNNING) -> AclPlan:
        local = LocalNode.from_config(self.config)
        current = set(self.firewall.list_acl(local.from_port, local.to_port))
        members = self.registry.list_members(local.app_name)

        bootstrap = state is RunState.RUNNING and self._claim_bootstrap()
        if bootstrap:
            db.log_event(
                "INFO",
                f"First run, adding own ranges {local.private_range} and {local.public_range}",
                job=self.name,
            )

        plan = compute_plan(local, members, current, state, bootstrap)

        if state is RunState.STOPPING:
            db.log_event("INFO", f"Shutting down, evicting {local.private_range} and {local.public_range}", job=self.name)
        if plan.to_remove:
            db.log_event("INFO", f"Removing {len(plan.to_remove)} range(s): {', '.join(sorted(plan.to_remove))}", job=self.name)
            self.firewall.remove_acl(plan.to_remove, local.from_port, local.to_port)
        if plan.to_add:
            db.log_event("INFO", f"Adding {len(plan.to_add)} range(s): {', '.join(sorted(plan.to_add))}", job=self.name)
            self.firewall.add_acl(plan.to_add, local.from_port, local.to_port)
        return plan

    def execute(self, state: RunState) -> AclPlan:
        return self.reconcile(state)

    def timer(self, rng: random.Random | None = None) -> TaskTimer:
        if self.config.is_seed:
            return seed_timer(self.name, self.config.acl_interval_s, rng)
        return once_timer(self.name)
