from __future__ import annotations

import abc
from dataclasses import dataclass

from . import db


class RegistryError(Exception):
    pass


@dataclass(frozen=True)
class ClusterMember:
    instance_id: str
    app_id: str
    region: str
    hostname: str  # private address or internal DNS name
    host_ip: str  # publicly routable address


class Registry(abc.ABC):
    """Source of cluster membership. Read-only for the reconciler."""

    @abc.abstractmethod
    def list_members(self, app_id: str) -> list[ClusterMember]:
        ...


class SqliteRegistry(Registry):
    """Membership records kept in the ``members`` table."""

    def list_members(self, app_id: str) -> list[ClusterMember]:
        return [
            ClusterMember(
                instance_id=r.instance_id,
                app_id=r.app_id,
                region=r.region,
                hostname=r.hostname,
                host_ip=r.host_ip,
            )
            for r in db.list_members(app_id)
        ]

    def register(self, member: ClusterMember) -> ClusterMember:
        if not member.instance_id:
            raise RegistryError("instance_id is required")
        if not member.app_id:
            raise RegistryError("app_id is required")
        db.upsert_member(member.instance_id, member.app_id, member.region, member.hostname, member.host_ip)
        db.log_event("INFO", f"Registered {member.instance_id} ({member.region}, {member.hostname}, {member.host_ip})")
        return member

    def deregister(self, instance_id: str) -> bool:
        removed = db.delete_member(instance_id)
        if removed:
            db.log_event("INFO", f"Deregistered {instance_id}")
        return removed
