import os
import sys

import pytest

# Ensure project root is importable (so `import sgr` and `main.py` work without installation)
_project_root = os.path.dirname(os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from sgr import db  # noqa: E402
from sgr.firewall import Firewall  # noqa: E402
from sgr.registry import ClusterMember, Registry  # noqa: E402
from sgr.settings import load_settings  # noqa: E402


@pytest.fixture(autouse=True)
def sgr_db(tmp_path, monkeypatch):
    """Isolated sqlite db and a clean SGR_* environment for every test."""
    for key in list(os.environ):
        if key.startswith("SGR_"):
            monkeypatch.delenv(key)
    path = str(tmp_path / "sgr.db")
    monkeypatch.setenv("SGR_DB_PATH", path)
    monkeypatch.setattr(db, "settings", load_settings())
    db.init_db()
    return path


@pytest.fixture
def node_env(monkeypatch):
    values = {
        "SGR_APP_NAME": "cass_cluster",
        "SGR_REGION": "us-east-1",
        "SGR_HOSTNAME": "10.0.0.1",
        "SGR_HOST_IP": "1.2.3.4",
        "SGR_INSTANCE_ID": "i-local",
    }
    for k, v in values.items():
        monkeypatch.setenv(k, v)
    return values


class FakeRegistry(Registry):
    def __init__(self, members=None):
        self.members = list(members or [])
        self.calls = 0

    def list_members(self, app_id):
        self.calls += 1
        return [m for m in self.members if m.app_id == app_id]


class FakeFirewall(Firewall):
    """In-memory ACL keyed by port interval. Records every call in order."""

    def __init__(self, ranges=(), from_port=7000, to_port=7001, apply=True):
        self.acl = {(from_port, to_port): set(ranges)}
        self.apply = apply
        self.calls = []
        self.fail_on = set()

    def ranges(self, from_port=7000, to_port=7001):
        return set(self.acl.get((from_port, to_port), set()))

    def list_acl(self, from_port, to_port):
        self.calls.append(("list", from_port, to_port))
        if "list" in self.fail_on:
            raise ConnectionError("firewall unreachable")
        return self.ranges(from_port, to_port)

    def add_acl(self, ranges, from_port, to_port):
        ranges = set(ranges)
        self.calls.append(("add", frozenset(ranges), from_port, to_port))
        if "add" in self.fail_on:
            raise ConnectionError("add failed")
        if self.apply:
            self.acl.setdefault((from_port, to_port), set()).update(ranges)

    def remove_acl(self, ranges, from_port, to_port):
        ranges = set(ranges)
        self.calls.append(("remove", frozenset(ranges), from_port, to_port))
        if "remove" in self.fail_on:
            raise ConnectionError("remove failed")
        if self.apply:
            self.acl.setdefault((from_port, to_port), set()).difference_update(ranges)

    def mutations(self):
        return [c for c in self.calls if c[0] in {"add", "remove"}]


def member(instance_id, region, hostname, host_ip, app_id="cass_cluster"):
    return ClusterMember(instance_id=instance_id, app_id=app_id, region=region, hostname=hostname, host_ip=host_ip)
