#!/usr/bin/env python3
"""
Integration test script for the foodsync server.
Run after deployment to verify health probes and the sync round trip.

Usage:
    python integration_test.py [base_url]

    base_url: Optional, defaults to http://127.0.0.1:3001

Examples:
    python integration_test.py
    python integration_test.py https://sync.example.com

Each run uses a fresh random share token, so it never touches real profiles.
"""

import secrets
import sys
import time
from datetime import datetime, timezone

import requests


# Configuration
DEFAULT_BASE_URL = "http://127.0.0.1:3001"
TIMEOUT_SECONDS = 10


def check(name: str, response: requests.Response, expected_status: int, started: float) -> bool:
    elapsed = (time.time() - started) * 1000
    if response.status_code == expected_status:
        print(f"  ✅ {name}: {response.status_code} ({elapsed:.0f}ms)")
        return True
    print(f"  ❌ {name}: Expected {expected_status}, got {response.status_code}")
    return False


def call(session: requests.Session, name: str, method: str, url: str, expected_status: int = 200, **kwargs):
    """Perform one request. Returns (ok, response or None)."""
    try:
        start = time.time()
        response = session.request(method, url, timeout=TIMEOUT_SECONDS, **kwargs)
        return check(name, response, expected_status, start), response
    except requests.exceptions.ConnectionError:
        print(f"  ❌ {name}: Connection refused")
    except requests.exceptions.Timeout:
        print(f"  ❌ {name}: Timeout after {TIMEOUT_SECONDS}s")
    except requests.exceptions.RequestException as e:
        print(f"  ❌ {name}: {type(e).__name__}: {e}")
    return False, None


def smoke_snapshot(profile_id: str, share_token: str) -> dict:
    now = datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
    return {
        "schemaVersion": 1,
        "profileId": profile_id,
        "profileName": "Smoke test",
        "shareToken": share_token,
        "revision": 0,
        "updatedAt": now,
        "settings": {},
        "items": {"apple": {"id": "apple", "exposureEvents": [now], "updatedAt": now}},
        "order": ["apple"],
        "meta": {"orderUpdatedAt": now},
    }


def run_tests(base_url: str) -> bool:
    """Run all integration tests."""
    print(f"\n{'='*60}")
    print("foodsync Integration Test")
    print(f"Base URL: {base_url}")
    print(f"Time: {datetime.now().isoformat()}")
    print(f"{'='*60}\n")

    session = requests.Session()
    results = []

    # === Health Endpoints ===
    print("Health Endpoints:")
    results.append(call(session, "Liveness", "GET", f"{base_url}/health/live")[0])
    results.append(call(session, "Readiness", "GET", f"{base_url}/health/ready")[0])
    results.append(call(session, "Full Health", "GET", f"{base_url}/health")[0])
    print()

    # === Sync API ===
    print("Sync API:")
    share_token = "smoke-" + secrets.token_urlsafe(16)
    profile_id = "smoke-" + secrets.token_hex(8)
    snapshot = smoke_snapshot(profile_id, share_token)
    pull_body = {"shareToken": share_token, "profileId": profile_id}

    def push_body(base_revision: int) -> dict:
        return {"shareToken": share_token, "profileId": profile_id, "baseRevision": base_revision, "snapshot": snapshot}

    results.append(call(session, "Pull unknown profile", "POST", f"{base_url}/api/sync/pull", 404, json=pull_body)[0])

    ok, created = call(session, "Create", "POST", f"{base_url}/api/sync/push", json=push_body(0))
    results.append(ok and created.json().get("revision") == 1)

    ok, updated = call(session, "Update", "POST", f"{base_url}/api/sync/push", json=push_body(1))
    results.append(ok and updated.json().get("revision") == 2)

    ok, conflict = call(session, "Stale push", "POST", f"{base_url}/api/sync/push", 409, json=push_body(1))
    results.append(ok and conflict.json().get("conflict") is True)

    ok, pulled = call(session, "Pull", "POST", f"{base_url}/api/sync/pull", json=pull_body)
    results.append(ok and pulled.json().get("revision") == 2)

    results.append(
        call(session, "Bad token", "POST", f"{base_url}/api/sync/pull", 400, json={"shareToken": "x"})[0]
    )
    print()

    # === Summary ===
    passed = sum(results)
    total = len(results)

    print(f"{'='*60}")
    print(f"Results: {passed}/{total} passed")

    if passed == total:
        print("✅ All tests passed!")
        return True
    else:
        print(f"❌ {total - passed} test(s) failed")
        return False


def main():
    base_url = sys.argv[1] if len(sys.argv) > 1 else DEFAULT_BASE_URL

    # Remove trailing slash
    base_url = base_url.rstrip("/")

    success = run_tests(base_url)
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
