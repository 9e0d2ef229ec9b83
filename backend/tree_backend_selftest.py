import json
import os

import requests

BASE = os.getenv("TREE_BACKEND_URL", "http://127.0.0.1:3001")
TIMEOUT = 15


def pretty(title, data):
    print("\n" + "=" * 60)
    print(">>> " + title)
    print("-" * 60)
    if isinstance(data, str):
        print(data)
    else:
        print(json.dumps(data, ensure_ascii=False, indent=2))


# -------------------------------------------------------------
# 1. /health + /roots
# -------------------------------------------------------------
def test_health_and_roots():
    print("\n[1] /health + /roots")
    r = requests.get(f"{BASE}/health", timeout=TIMEOUT)
    r.raise_for_status()
    pretty("health", r.json())

    r2 = requests.get(f"{BASE}/roots", timeout=TIMEOUT)
    r2.raise_for_status()
    roots = r2.json()
    pretty("roots by type", roots)
    return roots


# -------------------------------------------------------------
# 2. create / update / move
# -------------------------------------------------------------
def test_create_update_move(map_root_id):
    print("\n[2] POST /nodes, PATCH /nodes/{id}, PUT /nodes/{id}/parent")
    payload = {"node": {"title": "Selftest A"}, "parentNodeId": map_root_id}
    r = requests.post(f"{BASE}/nodes", json=payload, timeout=TIMEOUT)
    r.raise_for_status()
    node_a = r.json()["node"]
    pretty("create A", r.json())

    payload = {"node": {"title": "Selftest B"}, "parentNodeId": map_root_id}
    r = requests.post(f"{BASE}/nodes", json=payload, timeout=TIMEOUT)
    r.raise_for_status()
    node_b = r.json()["node"]

    r = requests.patch(
        f"{BASE}/nodes/{node_a['id']}",
        json={"setMetrics": {"readinessLevel": 4}},
        timeout=TIMEOUT,
    )
    r.raise_for_status()
    pretty("set readinessLevel on A", r.json())

    r = requests.put(
        f"{BASE}/nodes/{node_b['id']}/parent",
        json={"newParentId": node_a["id"]},
        timeout=TIMEOUT,
    )
    r.raise_for_status()
    pretty("move B under A", r.json())

    r = requests.put(
        f"{BASE}/nodes/{node_a['id']}/parent",
        json={"newParentId": node_b["id"]},
        timeout=TIMEOUT,
    )
    print("\n[check] moving A under its own child is rejected:", r.status_code == 400)
    return node_a


# -------------------------------------------------------------
# 3. subtree + delete
# -------------------------------------------------------------
def test_subtree_and_delete(node_id):
    print("\n[3] GET /nodes/{id}/subtree + DELETE /nodes/{id}")
    r = requests.get(f"{BASE}/nodes/{node_id}/subtree", timeout=TIMEOUT)
    r.raise_for_status()
    pretty("subtree", r.json())

    r = requests.delete(f"{BASE}/nodes/{node_id}", timeout=TIMEOUT)
    r.raise_for_status()
    removed = r.json()["removed"]
    pretty("delete", r.json())
    print("\n[check] removed node count:", len(removed))


if __name__ == "__main__":
    print("=== tree backend selftest ===")
    roots = test_health_and_roots()
    created = test_create_update_move(roots["map"]["id"])
    test_subtree_and_delete(created["id"])
    print("\n=== selftest finished ===")
