#!/usr/bin/env python3
"""Probe a running Grantwright API: health, readiness and proposal listing."""

from __future__ import annotations

import argparse
import json

import httpx


def _check(client: httpx.Client, path: str, errors: list[str]) -> dict[str, object] | None:
    try:
        response = client.get(path)
    except httpx.HTTPError as exc:
        errors.append(f"GET {path} failed: {exc}")
        return None
    if response.status_code != 200:
        errors.append(f"GET {path} returned {response.status_code}: {response.text[:200]}")
        return None
    request_id = response.headers.get("X-Request-ID", "-")
    print(f"[OK] GET {path} ({response.elapsed.total_seconds() * 1000:.0f} ms, request_id={request_id})")
    return response.json()


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--base-url", default="http://localhost:8000", help="API base URL.")
    parser.add_argument("--timeout", type=float, default=10.0, help="Per-request timeout in seconds.")
    args = parser.parse_args()

    errors: list[str] = []
    with httpx.Client(base_url=args.base_url.rstrip("/"), timeout=args.timeout) as client:
        health = _check(client, "/health", errors)
        if health is not None:
            missing = [name for name, present in dict(health.get("env") or {}).items() if not present]
            if missing:
                errors.append(f"Missing credentials: {', '.join(missing)}")
        ready = _check(client, "/ready", errors)
        if ready is not None:
            print(json.dumps(ready.get("checks"), indent=2))
        proposals = _check(client, "/proposals", errors)
        if proposals is not None:
            print(f"Stored proposals: {len(proposals.get('proposals') or [])}")

    if errors:
        for error in errors:
            print(f"[ERROR] {error}")
        return 1
    print("Smoke checks passed.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
