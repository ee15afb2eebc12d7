"""
Locust Load Test Suite

Run scenarios:
  locust -f locustfile.py --tags concurrency  # Test double booking
  locust -f locustfile.py --tags throughput   # Test availability cache
  locust -f locustfile.py --tags edge         # Test bad input
  locust -f locustfile.py                     # All tests
"""

import random
import uuid
from locust import HttpUser, task, between, tag, events
from datetime import datetime, timezone, timedelta

# Shared state
RESOURCE_IDS = [f"room-{n}" for n in range(1, 21)]
SERIES_IDS = []
CONTENDED_RESOURCE = f"contended-{uuid.uuid4().hex[:8]}"
CONTENDED_START = None


def future_hour(days_ahead: int, hour: int) -> datetime:
    day = datetime.now(timezone.utc).replace(minute=0, second=0, microsecond=0) + timedelta(days=days_ahead)
    return day.replace(hour=hour)


@events.test_start.add_listener
def on_test_start(environment, **kwargs):
    """Setup: Fix the single slot every concurrency user fights for."""
    global CONTENDED_START
    CONTENDED_START = future_hour(30, 9)
    print("\n" + "="*60)
    print(f"SETUP: contended slot {CONTENDED_RESOURCE} @ {CONTENDED_START.isoformat()}")
    print("="*60)


class ConcurrencyUser(HttpUser):
    """
    TEST 1: Concurrency - 100 users → 1 slot

    Run: locust -f locustfile.py --tags concurrency -u 100 -r 50 --run-time 30s

    After test, verify:
      SELECT COUNT(*) FROM booking_instance
      WHERE resource_id = '<contended>' AND NOT is_exception;
    Should be exactly 1
    """
    wait_time = between(0, 0.1)

    @tag("concurrency")
    @task
    def book_contended_slot(self):
        """All users fight for the same hour on the same resource."""
        if CONTENDED_START is None:
            return

        with self.client.post("/api/v1/bookings/",
            json={
                "resource_id": CONTENDED_RESOURCE,
                "start_time": CONTENDED_START.isoformat(),
                "end_time": (CONTENDED_START + timedelta(hours=1)).isoformat(),
            },
            name="/api/v1/bookings/ [contended]",
            catch_response=True
        ) as resp:
            if resp.status_code == 201:
                resp.success()
            elif resp.status_code == 409:
                resp.success()  # Expected: already taken
            else:
                resp.failure(f"Unexpected: {resp.status_code}")


class ThroughputUser(HttpUser):
    """
    TEST 2: Throughput - Cache effectiveness

    Run twice:
      1. With Redis: locust -f locustfile.py --tags throughput -u 100 -r 20 --run-time 60s
      2. Without Redis: REDIS_ENABLED=false, run again

    Compare:
      - Avg response time
      - Requests/sec
      - P95/P99 latency
    """
    wait_time = between(0.1, 0.5)

    @tag("throughput", "read")
    @task(10)
    def availability_cached(self):
        """Hammer the cached endpoint with a small set of repeated ranges."""
        start = future_hour(random.randint(1, 5), 0)
        self.client.get("/api/v1/availability/",
            params={
                "resource_id": random.choice(RESOURCE_IDS),
                "start_date": start.isoformat(),
                "end_date": (start + timedelta(days=7)).isoformat(),
            },
            name="/api/v1/availability/ [cached]")

    @tag("throughput", "read")
    @task(3)
    def next_slots(self):
        """Ask for alternatives, the expensive uncached read."""
        self.client.get("/api/v1/availability/next-slots",
            params={
                "resource_id": random.choice(RESOURCE_IDS),
                "from_time": future_hour(1, 8).isoformat(),
                "duration_minutes": 60,
            },
            name="/api/v1/availability/next-slots")

    @tag("throughput")
    @task(1)
    def health_check(self):
        """Monitor system health."""
        self.client.get("/health")


class EdgeCaseUser(HttpUser):
    """
    TEST 3: Edge cases - Bad input handling

    Run: locust -f locustfile.py --tags edge -u 20 -r 5 --run-time 30s

    System should NOT crash, return proper error codes.
    """
    wait_time = between(0.5, 1.5)

    def _expect(self, resp, codes):
        if resp.status_code in codes:
            resp.success()
        else:
            resp.failure(f"Expected {codes}, got {resp.status_code}")

    @tag("edge")
    @task
    def inverted_range(self):
        """End before start."""
        start = future_hour(3, 10)
        with self.client.post("/api/v1/bookings/",
            json={
                "resource_id": "edge-room",
                "start_time": start.isoformat(),
                "end_time": (start - timedelta(hours=1)).isoformat(),
            },
            catch_response=True
        ) as resp:
            self._expect(resp, [400])

    @tag("edge")
    @task
    def booking_in_past(self):
        """Start time already gone."""
        start = datetime.now(timezone.utc) - timedelta(days=1)
        with self.client.post("/api/v1/bookings/",
            json={
                "resource_id": "edge-room",
                "start_time": start.isoformat(),
                "end_time": (start + timedelta(hours=1)).isoformat(),
            },
            catch_response=True
        ) as resp:
            self._expect(resp, [400])

    @tag("edge")
    @task
    def garbage_rule(self):
        """Unparseable recurrence rule."""
        start = future_hour(4, 10)
        with self.client.post("/api/v1/bookings/",
            json={
                "resource_id": "edge-room",
                "start_time": start.isoformat(),
                "end_time": (start + timedelta(hours=1)).isoformat(),
                "recurrence_rule": "RRULE:FREQ=SOMETIMES",
            },
            catch_response=True
        ) as resp:
            self._expect(resp, [400])

    @tag("edge")
    @task
    def unknown_series(self):
        """Cancel an occurrence of a series that does not exist."""
        with self.client.post(f"/api/v1/bookings/{uuid.uuid4()}/exceptions",
            json={"instance_date": future_hour(2, 0).date().isoformat()},
            name="/api/v1/bookings/{id}/exceptions [unknown]",
            catch_response=True
        ) as resp:
            self._expect(resp, [404])

    @tag("edge")
    @task
    def malformed_json(self):
        """Send garbage data."""
        with self.client.post("/api/v1/bookings/",
            data="not json at all",
            catch_response=True
        ) as resp:
            self._expect(resp, [400, 422])


class RealisticUser(HttpUser):
    """
    TEST 4: Realistic mixed workload

    Run: locust -f locustfile.py -u 200 -r 20 --run-time 120s

    Simulates real traffic:
      - Mostly availability lookups
      - Some single and weekly bookings
      - Rare cancellations
    """
    wait_time = between(1, 3)

    @task(50)
    def browse_availability(self):
        start = future_hour(random.randint(1, 14), 0)
        self.client.get("/api/v1/availability/",
            params={
                "resource_id": random.choice(RESOURCE_IDS),
                "start_date": start.isoformat(),
                "end_date": (start + timedelta(days=1)).isoformat(),
            },
            name="/api/v1/availability/")

    @task(15)
    def book_single(self):
        start = future_hour(random.randint(1, 60), random.randint(8, 17))
        resp = self.client.post("/api/v1/bookings/",
            json={
                "resource_id": random.choice(RESOURCE_IDS),
                "start_time": start.isoformat(),
                "end_time": (start + timedelta(minutes=random.choice([30, 60, 90]))).isoformat(),
            },
            name="/api/v1/bookings/ [single]")
        if resp.status_code == 201:
            SERIES_IDS.append(resp.json()["booking_id"])

    @task(5)
    def book_weekly(self):
        start = future_hour(random.randint(1, 60), random.randint(8, 17))
        resp = self.client.post("/api/v1/bookings/",
            json={
                "resource_id": random.choice(RESOURCE_IDS),
                "start_time": start.isoformat(),
                "end_time": (start + timedelta(hours=1)).isoformat(),
                "recurrence_rule": f"RRULE:FREQ=WEEKLY;COUNT={random.randint(2, 12)}",
            },
            name="/api/v1/bookings/ [weekly]")
        if resp.status_code == 201:
            SERIES_IDS.append(resp.json()["booking_id"])

    @task(2)
    def cancel_first_occurrence(self):
        if not SERIES_IDS:
            return
        series_id = random.choice(SERIES_IDS)
        detail = self.client.get(f"/api/v1/bookings/{series_id}", name="/api/v1/bookings/{id}")
        if detail.status_code != 200:
            return
        day = detail.json()["series"]["start_time"][:10]
        self.client.post(f"/api/v1/bookings/{series_id}/exceptions",
            json={"instance_date": day},
            name="/api/v1/bookings/{id}/exceptions")
