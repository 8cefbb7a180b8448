import json
import sys
import time
from typing import Any, Dict, List, Optional

import requests

BASE_URL = "http://localhost:8000"
TIMEOUT = 60


def hr(title: str) -> None:
    print("\n" + "=" * 90)
    print(title)
    print("=" * 90)


def pretty(obj: Any) -> str:
    return json.dumps(obj, indent=2, ensure_ascii=False)


def request_json(method: str, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
    url = BASE_URL + path
    r = requests.request(method, url, params=params, timeout=TIMEOUT)
    try:
        r.raise_for_status()
    except requests.HTTPError:
        # Show error body if possible
        try:
            body = r.json()
        except ValueError:
            body = r.text
        raise RuntimeError(f"{method} {path} failed: {r.status_code}\n{body}")
    return r.json()


def post(path: str, **params: Any) -> Any:
    return request_json("POST", path, params or None)


def get(path: str, **params: Any) -> Any:
    return request_json("GET", path, params or None)


def put(path: str, **params: Any) -> Any:
    return request_json("PUT", path, params or None)


def print_flows(edges: List[Dict[str, Any]], limit: int = 10) -> None:
    if not edges:
        print("No flows yet.")
        return

    print(f"{'Rank':<6}{'Source':<16}{'Target':<16}{'CKB':>16}")
    print("-" * 54)
    for i, row in enumerate(edges[:limit], start=1):
        src = row["source"][:6] + ".." + row["source"][-4:]
        dst = row["target"][:6] + ".." + row["target"][-4:]
        print(f"{i:<6}{src:<16}{dst:<16}{row['value_ckb']:>16}")


def wait_for_seed(attempts: int = 20) -> Dict[str, Any]:
    for _ in range(attempts):
        health = get("/health")
        if health.get("graph", {}) and health["graph"]["nodes"] > 0:
            return health
        if health.get("seed_error"):
            print(f"❌ Seed failed: {health['seed_error']}")
            sys.exit(1)
        time.sleep(0.5)
    print("❌ Seed address never appeared; is the API running?")
    sys.exit(1)


def main() -> None:
    hr("1) Health check")
    print(pretty(wait_for_seed()))

    hr("2) Tune layout distance and page size")
    print(pretty(put("/settings", distance=300, page_limit=25)))

    hr("3) Rejected settings are reported, not applied")
    try:
        put("/settings", page_limit="abc")
    except RuntimeError as e:
        print(e)

    graph = get("/graph")
    seed = graph["nodes"][0]["id"]

    hr(f"4) Load one page for the seed: {seed}")
    report = post(f"/nodes/{seed}/load-more", wait="true")
    print(pretty(report))

    hr("5) Load one page for every discovered counterparty")
    frames = get("/graph/frames")
    for node in frames["nodes"]:
        if node["id"] != seed and node["has_more"]:
            r = post(f"/nodes/{node['id']}/load-more", wait="true")
            print(f"{node['id'][:10]}..  {r['status']:<10} batch={r['batch_size']:<4} failed={len(r['failed'])}")

    hr("6) Largest flows")
    frames = get("/graph/frames")
    print_flows(frames["edges"])

    hr("7) Scene viewport")
    time.sleep(2.5)  # let the render loop refit at least once
    scene = get("/graph")["scene"]
    print(pretty(scene["viewport"]))

    hr("8) Drill-down link for the seed")
    print(pretty(post(f"/nodes/{seed}/open")))

    print("\n✅ Demo complete.")


if __name__ == "__main__":
    main()
