from __future__ import annotations

import argparse
import json
import os
import sys

import requests


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Security Group Reconciler CLI")
    p.add_argument("--api", default="http://localhost:8000", help="API base URL")
    p.add_argument("--user", default=os.getenv("SGR_ADMIN_USER", "admin"))
    p.add_argument("--password", default=os.getenv("SGR_ADMIN_PASSWORD", "change-me"))
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("members", help="List cluster members")
    sub.add_parser("acl", help="Show current firewall ranges")
    sub.add_parser("jobs", help="Show scheduled job status")
    sub.add_parser("config", help="Show merged node configuration")

    s_ev = sub.add_parser("events", help="Show events")
    s_ev.add_argument("--limit", type=int, default=20)

    s_reg = sub.add_parser("register", help="Register/update a cluster member")
    s_reg.add_argument("--instance-id", required=True)
    s_reg.add_argument("--region", required=True)
    s_reg.add_argument("--hostname", required=True, help="Private address or internal DNS name")
    s_reg.add_argument("--host-ip", required=True, help="Public address")
    s_reg.add_argument("--app-id")

    s_dereg = sub.add_parser("deregister", help="Remove a cluster member")
    s_dereg.add_argument("instance_id")

    sub.add_parser("reconcile", help="Run the ACL reconciler now")

    s_prop = sub.add_parser("set-property", help="Store a node property override")
    s_prop.add_argument("property")
    s_prop.add_argument("value")
    s_prop.add_argument("--region", default="", help="Only apply in this region")

    args = p.parse_args(argv)

    base = args.api.rstrip("/")
    auth = (args.user, args.password)

    if args.cmd in {"members", "acl", "jobs", "config"}:
        _print(requests.get(f"{base}/{args.cmd}", timeout=10).json())
        return 0

    if args.cmd == "events":
        _print(requests.get(f"{base}/events", params={"limit": args.limit}, timeout=10).json())
        return 0

    if args.cmd == "register":
        payload = {
            "instance_id": args.instance_id,
            "region": args.region,
            "hostname": args.hostname,
            "host_ip": args.host_ip,
        }
        if args.app_id:
            payload["app_id"] = args.app_id
        r = requests.post(f"{base}/members", json=payload, auth=auth, timeout=30)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "deregister":
        r = requests.delete(f"{base}/members/{args.instance_id}", auth=auth, timeout=30)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "reconcile":
        r = requests.post(f"{base}/reconcile", auth=auth, timeout=120)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "set-property":
        payload = {"property": args.property, "value": args.value, "region": args.region}
        r = requests.put(f"{base}/properties", json=payload, auth=auth, timeout=30)
        _print(r.json())
        return 0 if r.ok else 1

    return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
