"""
Locust Load Test Suite

Run scenarios:
  locust -f locustfile.py --tags contention   # Last-seat race: no overselling
  locust -f locustfile.py --tags counter      # Counter sales racing online bookings
  locust -f locustfile.py --tags throughput   # Seat map cache
  locust -f locustfile.py --tags edge         # Bad input
  locust -f locustfile.py                     # All tests

Identity is issued elsewhere, so tokens are minted locally with the API's
SECRET_KEY. The users must already exist:
  LOAD_COMPANY_ID      company owning the test trips (default 1)
  LOAD_ADMIN_ID        COMPANY_ADMIN of that company (default 1)
  LOAD_CASHIER_ID      CASHIER of that company (default 2)
  LOAD_CUSTOMER_IDS    customer id range, e.g. "3-502" (default)
"""

import os
import random
from datetime import datetime, timezone, timedelta

from locust import HttpUser, task, between, tag, events

from busbooking.core.security import create_access_token

COMPANY_ID = int(os.environ.get("LOAD_COMPANY_ID", "1"))
ADMIN_ID = int(os.environ.get("LOAD_ADMIN_ID", "1"))
CASHIER_ID = int(os.environ.get("LOAD_CASHIER_ID", "2"))
_first, _last = os.environ.get("LOAD_CUSTOMER_IDS", "3-502").split("-")
CUSTOMER_IDS = list(range(int(_first), int(_last) + 1))

# Shared state
TRIP_IDS = []
CONTENTION_TRIP_ID = None
CONTENTION_SLOTS = 10


def auth_headers(user_id, role="CUSTOMER", company_id=None):
    claims = {"sub": str(user_id), "role": role}
    if company_id is not None:
        claims["company_id"] = company_id
    return {"Authorization": f"Bearer {create_access_token(claims, timedelta(hours=2))}"}


ADMIN_HEADERS = auth_headers(ADMIN_ID, "COMPANY_ADMIN", COMPANY_ID)
CASHIER_HEADERS = auth_headers(CASHIER_ID, "CASHIER", COMPANY_ID)


def trip_payload(total_slots):
    departure = (datetime.now(timezone.utc) + timedelta(days=random.randint(1, 30))).isoformat()
    return {
        "origin": "Addis Ababa",
        "destination": random.choice(["Hawassa", "Bahir Dar", "Adama", "Dire Dawa"]),
        "departure_time": departure,
        "price": "500.00",
        "total_slots": total_slots,
    }


def passenger(i=0):
    return {"name": f"Load Passenger {i}", "phone": f"09{random.randint(10000000, 99999999)}"}


@events.test_start.add_listener
def on_test_start(environment, **kwargs):
    print("\n" + "=" * 60)
    print("SETUP: seat ledger load test")
    print(f"  company={COMPANY_ID} customers={len(CUSTOMER_IDS)}")
    print("=" * 60)


class ContentionUser(HttpUser):
    """
    TEST 1: Contention - hundreds of customers → 10 seats

    Run: locust -f locustfile.py --tags contention -u 200 -r 50 --run-time 30s

    After test, verify:
      SELECT SUM(n) FROM (SELECT COUNT(*) n FROM passengers p
        JOIN bookings b ON b.id = p.booking_id
        WHERE b.trip_id = X AND b.status <> 'CANCELLED') s;
    Should be ≤ 10, and trips.available_slots = 10 - that sum.
    """
    wait_time = between(0, 0.1)

    def on_start(self):
        self.headers = auth_headers(random.choice(CUSTOMER_IDS))
        if not CONTENTION_TRIP_ID:
            resp = self.client.post(
                "/api/v1/trips", json=trip_payload(CONTENTION_SLOTS), headers=ADMIN_HEADERS
            )
            if resp.status_code == 201:
                globals()["CONTENTION_TRIP_ID"] = resp.json()["id"]
                # Auto-halt would stop online sales before the last seats
                self.client.put(
                    f"/api/v1/trips/{CONTENTION_TRIP_ID}/auto-halt-setting",
                    json={"bypass_enabled": True},
                    headers=ADMIN_HEADERS,
                )
                print(f"\n✓ Created trip {CONTENTION_TRIP_ID} with {CONTENTION_SLOTS} seats\n")

    @tag("contention")
    @task
    def book_last_seats(self):
        """Everyone fights for the same handful of seats."""
        if not CONTENTION_TRIP_ID:
            return

        with self.client.post(
            "/api/v1/bookings",
            json={"trip_id": CONTENTION_TRIP_ID, "passengers": [passenger()]},
            headers=self.headers,
            catch_response=True,
        ) as resp:
            if resp.status_code == 201:
                resp.success()
            elif resp.status_code == 400 and resp.json()["detail"]["code"] in (
                "INSUFFICIENT_SEATS",
                "SEAT_ALREADY_TAKEN",
                "BOOKING_HALTED",
            ):
                resp.success()  # Expected: sold out
            elif resp.status_code == 503:
                resp.success()  # Retry-After under heavy lock contention
            else:
                resp.failure(f"Unexpected: {resp.status_code}")


class CounterSaleUser(HttpUser):
    """
    TEST 2: Counter sales racing online bookings on the same trips

    Run: locust -f locustfile.py --tags counter -u 50 -r 10 --run-time 60s

    Cashiers are never blocked by auto-halt, so trips should sell out
    completely with no seat assigned twice.
    """
    wait_time = between(0.1, 0.5)

    def on_start(self):
        resp = self.client.post("/api/v1/trips", json=trip_payload(40), headers=ADMIN_HEADERS)
        if resp.status_code == 201:
            TRIP_IDS.append(resp.json()["id"])
        self.customer_headers = auth_headers(random.choice(CUSTOMER_IDS))

    @tag("counter")
    @task(3)
    def counter_sale(self):
        if not TRIP_IDS:
            return
        trip_id = random.choice(TRIP_IDS)
        with self.client.post(
            f"/api/v1/trips/{trip_id}/counter-sales",
            json={"passenger_count": random.randint(1, 3)},
            headers=CASHIER_HEADERS,
            name="/api/v1/trips/{id}/counter-sales",
            catch_response=True,
        ) as resp:
            if resp.status_code in (201, 400, 503):
                resp.success()
            else:
                resp.failure(f"Unexpected: {resp.status_code}")

    @tag("counter")
    @task(2)
    def online_booking(self):
        if not TRIP_IDS:
            return
        trip_id = random.choice(TRIP_IDS)
        with self.client.post(
            "/api/v1/bookings",
            json={"trip_id": trip_id, "passengers": [passenger(i) for i in range(random.randint(1, 2))]},
            headers=self.customer_headers,
            catch_response=True,
        ) as resp:
            if resp.status_code in (201, 400, 503):
                resp.success()
            else:
                resp.failure(f"Unexpected: {resp.status_code}")


class ThroughputUser(HttpUser):
    """
    TEST 3: Throughput - Seat map cache effectiveness

    Run twice:
      1. With Redis: locust -f locustfile.py --tags throughput -u 100 -r 20 --run-time 60s
      2. Without Redis: Stop Redis, run again

    Compare:
      - Avg response time
      - Requests/sec
      - P95/P99 latency
    """
    wait_time = between(0.1, 0.5)

    @tag("throughput", "read")
    @task(10)
    def seat_map_cached(self):
        if TRIP_IDS:
            trip_id = random.choice(TRIP_IDS)
            self.client.get(f"/api/v1/trips/{trip_id}/seats", name="/api/v1/trips/{id}/seats [cached]")

    @tag("throughput", "read")
    @task(3)
    def trip_detail(self):
        if TRIP_IDS:
            self.client.get(f"/api/v1/trips/{random.choice(TRIP_IDS)}", name="/api/v1/trips/{id}")

    @tag("throughput")
    @task(1)
    def health_check(self):
        self.client.get("/health")


class EdgeCaseUser(HttpUser):
    """
    TEST 4: Edge cases - Bad input handling

    Run: locust -f locustfile.py --tags edge -u 20 -r 5 --run-time 30s

    System should NOT crash, return proper error codes.
    """
    wait_time = between(0.5, 1.5)

    def on_start(self):
        self.headers = auth_headers(random.choice(CUSTOMER_IDS))

    def _expect(self, resp, codes):
        if resp.status_code in codes:
            resp.success()
        else:
            resp.failure(f"Expected {codes}, got {resp.status_code}")

    @tag("edge")
    @task
    def invalid_trip_id(self):
        with self.client.post(
            "/api/v1/bookings",
            json={"trip_id": 999999, "passengers": [passenger()]},
            headers=self.headers,
            catch_response=True,
        ) as resp:
            self._expect(resp, [404])

    @tag("edge")
    @task
    def no_passengers(self):
        with self.client.post(
            "/api/v1/bookings",
            json={"trip_id": 1, "passengers": []},
            headers=self.headers,
            catch_response=True,
        ) as resp:
            self._expect(resp, [422])

    @tag("edge")
    @task
    def too_many_passengers(self):
        with self.client.post(
            "/api/v1/bookings",
            json={"trip_id": 1, "passengers": [passenger(i) for i in range(50)]},
            headers=self.headers,
            catch_response=True,
        ) as resp:
            self._expect(resp, [400, 422])

    @tag("edge")
    @task
    def forged_webhook(self):
        with self.client.post(
            "/api/v1/payments/telebirr/callback",
            json={"outTradeNo": "booking_1", "transactionId": "forged", "status": "SUCCESS"},
            catch_response=True,
        ) as resp:
            self._expect(resp, [401])

    @tag("edge")
    @task
    def missing_auth(self):
        with self.client.post(
            "/api/v1/bookings",
            json={"trip_id": 1, "passengers": [passenger()]},
            catch_response=True,
        ) as resp:
            self._expect(resp, [401])
