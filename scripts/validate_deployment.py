"""
Post-Deploy Smoke Test Script.

Runs against a live server (seed it first with backend/seed_demo_trip.py):
1. Health Check
2. Ingest a location sample for the demo trip
3. ETA, anomaly and consistency reads
"""

import sys
import time
import httpx

BASE_URL = "http://127.0.0.1:8000"
API_PREFIX = "/v1/tracking"


def print_step(step, msg):
    print(f"[{step}] {msg}")


def fail(msg):
    print(f"❌ FAILURE: {msg}")
    sys.exit(1)


def success(msg):
    print(f"✅ {msg}")


def wait_for_server(retries=10, delay=2):
    url = f"{BASE_URL}/health"
    print(f"Waiting for server at {url}...")
    for _ in range(retries):
        try:
            resp = httpx.get(url)
            if resp.status_code == 200:
                return resp.json()
        except httpx.ConnectError:
            pass
        time.sleep(delay)
    return None


def main(trip_id: int):
    print("🚀 Starting Deployment Validation...")

    # 1. Health Check
    print_step("PRE-DEPLOY", "Checking /health...")
    health = wait_for_server()
    if health is None:
        fail("Server failed to start")
    success(f"Server is up (redis: {health.get('redis')})")

    with httpx.Client(base_url=f"{BASE_URL}{API_PREFIX}") as client:
        # 2. Ingest
        print_step("SMOKE", f"Posting a location sample for trip {trip_id}...")
        res = client.post(
            f"/trips/{trip_id}/locations",
            json={"latitude": 41.3083, "longitude": -72.9279, "speed": 88, "source": "GPS"}
        )
        if res.status_code != 201:
            fail(f"Location ingest failed: {res.status_code} {res.text}")
        success(f"Sample stored, ETA {res.json()['estimated_arrival']}")

        # 3. Reads
        print_step("VERIFY", "Checking ETA and diagnostics...")
        for path in ("eta", "anomalies", "consistency", "delay"):
            res = client.get(f"/trips/{trip_id}/{path}")
            if res.status_code != 200:
                fail(f"GET {path} failed: {res.status_code} {res.text}")
            success(f"{path}: {res.json()}")

    success("Deployment Validation Passed!")


if __name__ == "__main__":
    main(int(sys.argv[1]) if len(sys.argv) > 1 else 1)
