"""Locust burst test: fork rate limit behavior under concurrent actors.

Every simulated actor uses a fresh DID, which the hub has never seen, so it is
classified NEW (1 fork per hour, 1 per day, 3 per week) and owns no rings (the
quality gate passes).

Validation checklist:
  1. ForkBurstActor: the first check returns 200, the fork is recorded, and
     every later check returns 429 with error_type "rate_limit".
  2. ForkBurstActor: 429 responses carry X-RateLimit-Reset-Hourly and
     X-RateLimit-User-Tier headers.
  3. StatusPoller: GET /api/v1/rate-limits/fork_ring never returns 429,
     whatever the quota state.
  4. Different actors: each actor has its own windows; 5 concurrent actors
     all get their first fork allowed.

Run command:
    locust -f tests/load/locustfile_fork_limit.py \\
      --host http://localhost:8000 \\
      --users 5 --spawn-rate 5 --run-time 30s \\
      --headless --only-summary --csv=results/fork_limit

    # Interpretation:
    # - ForkBurstActor [record] count should equal the number of users
    # - ForkBurstActor 429 count should be everything else
    # - StatusPoller failure count should be 0

Prerequisites:
    1. Start the API with DATABASE_URL pointing at a migrated database
    2. mkdir -p results/
"""

import time
import uuid

from locust import HttpUser, constant, task

ACTOR_HEADER = "X-Actor-DID"
FORK_CHECK = "/api/v1/rate-limits/fork_ring/check"
FORK_RECORD = "/api/v1/rate-limits/fork_ring/record"
FORK_STATUS = "/api/v1/rate-limits/fork_ring"


def fresh_did(prefix: str) -> str:
    return f"did:plc:load-{prefix}-{uuid.uuid4().hex[:16]}"


class ForkBurstActor(HttpUser):
    """Checks and records forks back to back.

    Both 200 and 429 are treated as success(); a 429 without its headers or
    with the wrong error_type is a failure.
    """

    wait_time = constant(0)

    def on_start(self) -> None:
        self.headers = {ACTOR_HEADER: fresh_did("burst")}
        self.allowed_count = 0
        self.denied_count = 0

    @task
    def fork_burst(self) -> None:
        with self.client.post(
            FORK_CHECK,
            headers=self.headers,
            catch_response=True,
            name=f"{FORK_CHECK} [burst]",
        ) as resp:
            if resp.status_code == 200:
                self.allowed_count += 1
                resp.success()
            elif resp.status_code == 429:
                self.denied_count += 1
                details = resp.json().get("detail", {}).get("details", {})
                if "X-RateLimit-Reset-Hourly" not in resp.headers:
                    resp.failure("429 response missing X-RateLimit-Reset-Hourly header")
                elif details.get("error_type") != "rate_limit":
                    resp.failure(f"Unexpected error_type {details.get('error_type')}")
                else:
                    resp.success()
                return
            else:
                resp.failure(f"Unexpected status {resp.status_code}")
                return

        self.client.post(
            FORK_RECORD,
            json={"metadata": {"ring_id": str(uuid.uuid4())}},
            headers=self.headers,
            name=f"{FORK_RECORD} [record]",
        )


class StatusPoller(HttpUser):
    """Reads quota status repeatedly; the status endpoint must never deny."""

    wait_time = constant(1)

    def on_start(self) -> None:
        self.headers = {ACTOR_HEADER: fresh_did("poll")}
        self._polls = 0

    @task
    def poll_status(self) -> None:
        if self._polls >= 20:
            # Idle between sessions
            time.sleep(10)
            self._polls = 0
            return

        with self.client.get(
            FORK_STATUS,
            headers=self.headers,
            catch_response=True,
            name=f"{FORK_STATUS} [poll]",
        ) as resp:
            if resp.status_code != 200:
                resp.failure(f"Status endpoint returned {resp.status_code}")
            elif resp.json().get("tier") != "NEW":
                resp.failure(f"Fresh actor classified {resp.json().get('tier')}")
            else:
                resp.success()
        self._polls += 1
