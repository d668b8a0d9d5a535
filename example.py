#!/usr/bin/env python3
"""Example usage of cloudbind.

Clients are pooled: `project.client()` creates ``min`` sessions in the
background and keeps them alive until `close()`.  Set SPANNER_PROJECT (or
GOOGLE_CLOUD_PROJECT) and CLOUDBIND_ACCESS_TOKEN, or run on a host with a
metadata server.
"""

import logging

from cloudbind import debugger, spanner

logging.basicConfig(level=logging.INFO)

project = spanner.new()

# ── Administration ───────────────────────────────────────────────────────
instance = project.instance("my-instance")
if instance is None:
    job = project.create_instance(
        "my-instance", name="My Instance", config="regional-us-central1", nodes=1
    )
    instance = job.wait_until_done().result
print("Instance:", instance)

database = instance.database("app")
if database is None:
    job = instance.create_database(
        "app",
        ["CREATE TABLE users (id INT64 NOT NULL, name STRING(MAX)) PRIMARY KEY (id)"],
    )
    database = job.wait_until_done().result
print("Schema:", database.ddl())

# ── Data ─────────────────────────────────────────────────────────────────
db = database.client(pool={"min": 2, "max": 10, "fail": False})
try:
    db.upsert("users", [{"id": 1, "name": "Ada"}, {"id": 2, "name": "Grace"}])

    for row in db.execute("SELECT id, name FROM users WHERE id > @id", params={"id": 0}):
        print("Row:", row)

    # Commits on success, rolls back if the block raises.
    with db.transaction() as tx:
        count = tx.execute_update("UPDATE users SET name = 'Ada L.' WHERE id = 1")
        tx.insert("users", {"id": 3, "name": "Linus"})
    print("Updated", count, "row(s), committed at", tx.committed_at)

    with db.snapshot(staleness=15) as snap:
        print("Stale read:", list(snap.read("users", ["id", "name"], keys=[1, 2])))

    db.delete("users", db.range(3, 10))
    print("Pool:", db.pool.stats())
finally:
    db.close()
    project.close()

# ── Debugger agent ───────────────────────────────────────────────────────
# Registers this process and serves snapshots and logpoints until stopped.
with debugger.new(service_name="example") as agent:
    print("Debuggee:", agent.debuggee.to_api()["labels"])
