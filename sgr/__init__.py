"""Security Group Reconciler (SGR).

Keeps a cloud firewall ACL in step with the members of a multi-region
cluster:
 - same-region peers are allowed by private address
 - every member is allowed by public address
 - ranges of departed members are revoked
 - a node evicts its own ranges on graceful shutdown

Seed nodes reconcile periodically with jitter; other nodes once at start-up.
"""
