from __future__ import annotations

import secrets
from dataclasses import asdict

from fastapi import Depends, FastAPI, HTTPException, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from sgr import db
from sgr.api_models import RegisterMemberRequest, SetPropertyRequest
from sgr.config import CompositeConfig, ConfigError, app_id_from_group, build_node_config
from sgr.firewall import FirewallError, build_firewall
from sgr.registry import ClusterMember, RegistryError, SqliteRegistry
from sgr.runtime import RuntimeState
from sgr.scheduler import TaskScheduler
from sgr.security import JOB_NAME, SecurityReconciler
from sgr.settings import settings

app = FastAPI(title="Security Group Reconciler")
security = HTTPBasic()

runtime = RuntimeState()
node_config = build_node_config()
registry = SqliteRegistry()
firewall = build_firewall(settings)
reconciler = SecurityReconciler(node_config, registry, firewall)
scheduler = TaskScheduler(runtime)


def get_current_username(credentials: HTTPBasicCredentials = Depends(security)) -> str:
    ok_user = secrets.compare_digest(credentials.username, settings.admin_user)
    ok_pass = secrets.compare_digest(credentials.password, settings.admin_password)
    if not (ok_user and ok_pass):
        raise HTTPException(status_code=401, detail="Invalid credentials", headers={"WWW-Authenticate": "Basic"})
    return credentials.username


def local_member() -> ClusterMember:
    return ClusterMember(
        instance_id=node_config.instance_id,
        app_id=node_config.app_name,
        region=node_config.region,
        hostname=node_config.hostname,
        host_ip=node_config.host_ip,
    )


@app.on_event("startup")
def startup() -> None:
    db.init_db()
    registry.register(local_member())
    # Registered even when the loop is disabled so shutdown still evicts this node.
    scheduler.add(reconciler, reconciler.timer())
    if settings.enable_scheduler:
        scheduler.start()


@app.on_event("shutdown")
def shutdown() -> None:
    try:
        scheduler.stop(final_run=True)
        registry.deregister(node_config.instance_id)
    finally:
        firewall.close()


@app.get("/health")
def health() -> dict:
    return {"status": "healthy"}


@app.get("/members")
def list_members() -> list[dict]:
    return [asdict(m) for m in registry.list_members(node_config.app_name)]


@app.post("/members", status_code=status.HTTP_201_CREATED)
def register_member(req: RegisterMemberRequest, username: str = Depends(get_current_username)) -> dict:
    member = ClusterMember(
        instance_id=req.instance_id,
        app_id=req.app_id or node_config.app_name,
        region=req.region,
        hostname=req.hostname,
        host_ip=req.host_ip,
    )
    try:
        registry.register(member)
    except RegistryError as e:
        raise HTTPException(status_code=400, detail=str(e))
    db.log_event("INFO", f"{username} registered member {member.instance_id}")
    return asdict(member)


@app.delete("/members/{instance_id}")
def deregister_member(instance_id: str, username: str = Depends(get_current_username)) -> dict:
    if not registry.deregister(instance_id):
        raise HTTPException(status_code=404, detail=f"Unknown member '{instance_id}'")
    db.log_event("INFO", f"{username} deregistered member {instance_id}")
    return {"instance_id": instance_id, "removed": True}


@app.get("/acl")
def current_acl() -> dict:
    try:
        from_port, to_port = node_config.storage_port, node_config.ssl_storage_port
        ranges = firewall.list_acl(from_port, to_port)
    except (ConfigError, ValueError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except FirewallError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"from_port": from_port, "to_port": to_port, "ranges": sorted(ranges)}


@app.post("/reconcile")
def reconcile_now(username: str = Depends(get_current_username)) -> dict:
    try:
        plan = scheduler.run_now(JOB_NAME)
    except KeyError:
        raise HTTPException(status_code=409, detail="Reconciler is not scheduled yet")
    except (ConfigError, ValueError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except FirewallError as e:
        raise HTTPException(status_code=502, detail=str(e))
    db.log_event("INFO", f"{username} triggered a reconcile", job=JOB_NAME)
    return {
        "added": sorted(plan.to_add),
        "removed": sorted(plan.to_remove),
        "expected": sorted(plan.expected),
        "bootstrapped": reconciler.bootstrapped,
    }


@app.get("/jobs")
def list_jobs() -> list[dict]:
    return [asdict(j) for j in runtime.list_jobs()]


@app.get("/events")
def list_events(limit: int = 100) -> list[dict]:
    return db.latest_events(max(1, min(1000, limit)))


@app.get("/config")
def show_config() -> dict:
    source = node_config.source
    node = source.snapshot() if isinstance(source, CompositeConfig) else {}
    return {"node": node, "sources": [repr(s) for s in getattr(source, "sources", [])]}


@app.put("/properties")
def set_property(req: SetPropertyRequest, username: str = Depends(get_current_username)) -> dict:
    app_id = app_id_from_group(node_config.app_name)
    row = db.set_property(app_id, req.property, req.value, req.region)
    db.log_event("INFO", f"{username} set property {req.property} for {app_id} (region={req.region or '*'})")
    return asdict(row)
