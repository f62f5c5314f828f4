#!/usr/bin/env python3
"""E2E demo script: dedup + reference lifecycle against a running API

Usage:
    # Terminal 1: Start the API
    uvicorn api.main:app

    # Terminal 2: Run demo (after the API is healthy)
    python scripts/demo_e2e.py

Environment variables:
    API_URL - Base URL for the API (default: http://localhost:8000)
"""

from __future__ import annotations

import hashlib
import os
import sys
import time
import uuid
from datetime import datetime, timezone

import httpx

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

API_URL = os.getenv("API_URL", "http://localhost:8000")
STARTUP_RETRY_SECONDS = 30
STARTUP_RETRY_INTERVAL = 2

# ---------------------------------------------------------------------------
# ANSI colors for terminal output
# ---------------------------------------------------------------------------

GREEN = "\033[92m"
RED = "\033[91m"
YELLOW = "\033[93m"
BOLD = "\033[1m"
RESET = "\033[0m"


def timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


def log_info(msg: str) -> None:
    print(f"[{timestamp()}] {msg}")


def log_success(msg: str) -> None:
    print(f"[{timestamp()}] {GREEN}✓ {msg}{RESET}")


def log_fail(msg: str) -> None:
    print(f"[{timestamp()}] {RED}✗ {msg}{RESET}")


def log_warning(msg: str) -> None:
    print(f"[{timestamp()}] {YELLOW}⚠ {msg}{RESET}")


# ---------------------------------------------------------------------------
# Demo step implementations
# ---------------------------------------------------------------------------

class DemoRunner:
    def __init__(self, base_url: str):
        self.base_url = base_url.rstrip("/")
        self.client = httpx.Client(timeout=30.0)
        # Unique per run so repeated demos start from a fresh blob
        self.content = f"demo content {uuid.uuid4()}\n".encode()
        self.digest = hashlib.sha256(self.content).hexdigest()
        self.file_ids: dict[str, str] = {}
        self.failed = False

    def run(self) -> bool:
        log_info(f"{BOLD}Starting E2E demo...{RESET}")
        log_info(f"API URL: {self.base_url}")
        print()

        steps = [
            ("Health check", self.step_health_check),
            ("Upload as alice", self.step_upload_alice),
            ("Upload same bytes as bob", self.step_upload_bob),
            ("Check reference count", self.step_check_shared),
            ("Delete alice's file", self.step_delete_alice),
            ("Download bob's file", self.step_download_bob),
            ("Check usage", self.step_usage),
            ("Delete bob's file", self.step_delete_bob),
        ]

        for step_name, step_fn in steps:
            try:
                success = step_fn()
                if not success:
                    self.failed = True
                    log_fail(f"Step failed: {step_name}")
                    break
            except Exception as e:
                self.failed = True
                log_fail(f"Step failed: {step_name}: {e}")
                break

        print()
        if self.failed:
            log_fail(f"{BOLD}E2E demo failed!{RESET}")
            return False
        log_success(f"{BOLD}All checks passed!{RESET}")
        return True

    def _upload(self, owner: str, filename: str) -> httpx.Response:
        return self.client.post(
            f"{self.base_url}/files",
            files={"file": (filename, self.content, "text/plain")},
            headers={"X-Owner-Id": owner},
        )

    def _reference_count(self) -> int:
        resp = self.client.get(f"{self.base_url}/blobs/{self.digest}")
        resp.raise_for_status()
        return resp.json()["reference_count"]

    def step_health_check(self) -> bool:
        log_info("Checking API health...")

        start_time = time.time()
        while time.time() - start_time < STARTUP_RETRY_SECONDS:
            try:
                resp = self.client.get(f"{self.base_url}/health")
                if resp.status_code == 200:
                    log_success("Health check passed")
                    return True
            except httpx.ConnectError:
                log_warning("API not reachable yet, retrying...")

            time.sleep(STARTUP_RETRY_INTERVAL)

        log_fail(f"API not healthy after {STARTUP_RETRY_SECONDS}s")
        return False

    def step_upload_alice(self) -> bool:
        resp = self._upload("alice", "notes.txt")
        if resp.status_code != 201:
            log_fail(f"Expected 201, got {resp.status_code}: {resp.text[:200]}")
            return False
        data = resp.json()
        if data["digest"] != self.digest:
            log_fail(f"Digest mismatch: {data['digest']} != {self.digest}")
            return False
        if data["already_existed"]:
            log_fail("First upload reported already_existed")
            return False
        self.file_ids["alice"] = data["file_id"]
        log_success(f"Stored {data['size_bytes']} bytes as {self.digest[:12]}...")
        return True

    def step_upload_bob(self) -> bool:
        resp = self._upload("bob", "copy-of-notes.txt")
        if resp.status_code != 201:
            log_fail(f"Expected 201, got {resp.status_code}: {resp.text[:200]}")
            return False
        data = resp.json()
        if not data["already_existed"]:
            log_fail("Second upload of identical bytes was not deduplicated")
            return False
        self.file_ids["bob"] = data["file_id"]
        log_success("Deduplicated against existing blob")
        return True

    def step_check_shared(self) -> bool:
        count = self._reference_count()
        if count != 2:
            log_fail(f"Expected reference_count 2, got {count}")
            return False
        log_success("Blob has 2 references")
        return True

    def step_delete_alice(self) -> bool:
        resp = self.client.delete(
            f"{self.base_url}/files/{self.file_ids['alice']}",
            headers={"X-Owner-Id": "alice"},
        )
        if resp.status_code != 204:
            log_fail(f"Expected 204, got {resp.status_code}")
            return False
        count = self._reference_count()
        if count != 1:
            log_fail(f"Expected reference_count 1, got {count}")
            return False
        log_success("Reference count dropped to 1")
        return True

    def step_download_bob(self) -> bool:
        resp = self.client.get(
            f"{self.base_url}/files/{self.file_ids['bob']}/content",
            headers={"X-Owner-Id": "bob"},
        )
        if resp.status_code != 200 or resp.content != self.content:
            log_fail(f"Download failed: {resp.status_code}")
            return False
        log_success("Bob's copy is intact")
        return True

    def step_usage(self) -> bool:
        resp = self.client.get(f"{self.base_url}/usage", headers={"X-Owner-Id": "bob"})
        resp.raise_for_status()
        data = resp.json()
        log_info(f"bob: total={data['total_bytes']} deduplicated={data['deduplicated_bytes']}")
        return data["total_bytes"] >= len(self.content)

    def step_delete_bob(self) -> bool:
        resp = self.client.delete(
            f"{self.base_url}/files/{self.file_ids['bob']}",
            headers={"X-Owner-Id": "bob"},
        )
        if resp.status_code != 204:
            log_fail(f"Expected 204, got {resp.status_code}")
            return False
        resp = self.client.get(f"{self.base_url}/blobs/{self.digest}")
        state = resp.json()["state"]
        if state != "unreferenced":
            log_fail(f"Expected unreferenced blob, got {state}")
            return False
        log_success("Blob is unreferenced and waits for the sweep")
        return True


# ---------------------------------------------------------------------------
# Main entry point
# ---------------------------------------------------------------------------

def main() -> int:
    runner = DemoRunner(API_URL)
    success = runner.run()
    return 0 if success else 1


if __name__ == "__main__":
    sys.exit(main())
