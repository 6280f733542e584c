"""
API Tests

Tests cover:
1. Booking and withdrawal endpoints end to end
2. Error mapping to HTTP status codes
3. Admin-only endpoints
"""

import pytest
from fastapi.testclient import TestClient

from loyalty import api as api_module
from loyalty.config import Settings
from loyalty.events import EventBus
from loyalty.service import LoyaltyService
from loyalty.storage import (
    InMemoryStorage,
    SEED_PARTNER_ID,
    SEED_FLAT_PRODUCT_ID,
    SEED_PRICED_PRODUCT_ID,
    SEED_INACTIVE_PRODUCT_ID,
)


ADMIN = {"X-Actor-Role": "admin"}
PARTNER = {"X-Actor-Role": "optometrist"}
UNKNOWN_ID = "00000000-0000-0000-0000-000000000000"


@pytest.fixture
def client(monkeypatch):
    settings = Settings(REWARD_CONVERSION_RATE=10, MIN_WITHDRAWAL_POINTS=2000)
    service = LoyaltyService(InMemoryStorage(), EventBus(handlers=[]), settings)
    monkeypatch.setattr(api_module, "loyalty_service", service)
    return TestClient(api_module.app)


def create_booking(client, quantity=10, product_id=SEED_FLAT_PRODUCT_ID):
    return client.post("/bookings", json={
        "partner_id": str(SEED_PARTNER_ID),
        "product_id": str(product_id),
        "quantity": quantity,
    })


class TestHealthAndCatalog:

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_list_active_products(self, client):
        products = client.get("/products").json()

        ids = {p["id"] for p in products}
        assert str(SEED_FLAT_PRODUCT_ID) in ids
        assert str(SEED_INACTIVE_PRODUCT_ID) not in ids

        everything = client.get("/products", params={"include_inactive": True}).json()
        assert str(SEED_INACTIVE_PRODUCT_ID) in {p["id"] for p in everything}

    def test_admin_adds_product(self, client):
        response = client.post("/products", headers=ADMIN, json={
            "product_name": "Clariti 1 Day", "brand": "CooperVision",
            "base_price": 2000, "reward_percentage": 5,
        })

        assert response.status_code == 201
        product_id = response.json()["id"]

        booking = create_booking(client, quantity=10, product_id=product_id)
        assert booking.json()["points_earned"] == 1000

    def test_partner_cannot_add_product(self, client):
        response = client.post("/products", headers=PARTNER, json={
            "product_name": "Clariti 1 Day", "points_per_unit": 100,
        })

        assert response.status_code == 403
        assert response.json()["detail"]["kind"] == "PermissionDenied"

    def test_product_needs_a_reward_form(self, client):
        response = client.post("/products", headers=ADMIN, json={"product_name": "No Reward"})

        assert response.status_code == 422

    def test_percentage_out_of_range(self, client):
        response = client.post("/products", headers=ADMIN, json={
            "product_name": "Too Generous", "base_price": 1000, "reward_percentage": 12,
        })

        assert response.status_code == 422

    def test_update_unknown_product(self, client):
        response = client.patch(f"/products/{UNKNOWN_ID}", headers=ADMIN, json={"active": False})

        assert response.status_code == 404
        assert response.json()["detail"]["kind"] == "ProductNotFound"


class TestProductUpdates:
    """Catalog edits are validated as a whole product before they are stored."""

    @pytest.mark.parametrize("field", ["active", "product_name", "stock_quantity", "brand"])
    def test_explicit_null_is_refused_and_nothing_is_stored(self, client, field):
        response = client.patch(f"/products/{SEED_FLAT_PRODUCT_ID}", headers=ADMIN, json={field: None})

        assert response.status_code == 422

        listing = client.get("/products", params={"include_inactive": True})
        assert listing.status_code == 200
        flat = next(p for p in listing.json() if p["id"] == str(SEED_FLAT_PRODUCT_ID))
        assert flat["active"] is True
        assert flat["product_name"] == "Biofinity Monthly"

    def test_switch_flat_product_to_price_form(self, client):
        response = client.patch(f"/products/{SEED_FLAT_PRODUCT_ID}", headers=ADMIN, json={
            "base_price": 2000, "reward_percentage": 5,
        })

        assert response.status_code == 200
        assert response.json()["points_per_unit"] is None
        assert create_booking(client, quantity=10).json()["points_earned"] == 1000

    def test_switch_price_product_to_flat_form(self, client):
        response = client.patch(f"/products/{SEED_PRICED_PRODUCT_ID}", headers=ADMIN, json={"points_per_unit": 30})

        assert response.status_code == 200
        body = response.json()
        assert body["base_price"] is None
        assert body["reward_percentage"] is None

        booking = create_booking(client, quantity=10, product_id=SEED_PRICED_PRODUCT_ID)
        assert booking.json()["points_earned"] == 300

    def test_removing_the_only_reward_form_is_refused(self, client):
        response = client.patch(f"/products/{SEED_FLAT_PRODUCT_ID}", headers=ADMIN, json={"points_per_unit": None})

        assert response.status_code == 400
        assert response.json()["detail"]["kind"] == "InvalidProduct"
        assert create_booking(client, quantity=1).json()["points_earned"] == 500

    def test_half_a_price_form_is_refused(self, client):
        response = client.patch(f"/products/{SEED_FLAT_PRODUCT_ID}", headers=ADMIN, json={"base_price": 2000})

        assert response.status_code == 400
        assert response.json()["detail"]["kind"] == "InvalidProduct"

    def test_new_product_with_both_forms_is_refused(self, client):
        response = client.post("/products", headers=ADMIN, json={
            "product_name": "Ambiguous", "points_per_unit": 100,
            "base_price": 2000, "reward_percentage": 5,
        })

        assert response.status_code == 422


class TestBookingEndpoints:

    def test_create_and_fetch_booking(self, client):
        response = create_booking(client, quantity=2)

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "waiting"
        assert body["points_earned"] == 1000

        fetched = client.get(f"/bookings/{body['id']}")
        assert fetched.status_code == 200
        assert fetched.json()["id"] == body["id"]

    def test_invalid_quantity(self, client):
        response = create_booking(client, quantity=0)

        assert response.status_code == 400
        assert response.json()["detail"]["kind"] == "InvalidQuantity"

    def test_oversized_quantity_leaves_balance_readable(self, client):
        response = create_booking(client, quantity=10**25)

        assert response.status_code == 400
        assert response.json()["detail"]["kind"] == "InvalidQuantity"
        assert client.get(f"/partners/{SEED_PARTNER_ID}/balance").status_code == 200

    def test_inactive_product(self, client):
        response = create_booking(client, product_id=SEED_INACTIVE_PRODUCT_ID)

        assert response.status_code == 400
        assert response.json()["detail"]["kind"] == "InvalidProduct"

    def test_review_requires_admin(self, client):
        booking_id = create_booking(client).json()["id"]

        response = client.post(f"/bookings/{booking_id}/status", headers=PARTNER, json={"status": "approved"})

        assert response.status_code == 403

    def test_second_review_is_rejected(self, client):
        booking_id = create_booking(client).json()["id"]

        first = client.post(f"/bookings/{booking_id}/status", headers=ADMIN, json={"status": "approved"})
        second = client.post(f"/bookings/{booking_id}/status", headers=ADMIN, json={"status": "rejected"})

        assert first.status_code == 200
        assert first.json()["status"] == "approved"
        assert second.status_code == 400
        assert second.json()["detail"]["kind"] == "InvalidTransition"

    def test_unknown_booking(self, client):
        response = client.get(f"/bookings/{UNKNOWN_ID}")

        assert response.status_code == 404
        assert response.json()["detail"]["kind"] == "BookingNotFound"

    def test_list_filtered_by_status(self, client):
        booking_id = create_booking(client).json()["id"]
        create_booking(client)
        client.post(f"/bookings/{booking_id}/status", headers=ADMIN, json={"status": "approved"})

        approved = client.get("/bookings", params={"booking_status": "approved"}).json()
        mine = client.get("/bookings", params={"partner_id": str(SEED_PARTNER_ID)}).json()

        assert [b["id"] for b in approved] == [booking_id]
        assert len(mine) == 2


class TestWithdrawalEndpoints:

    def approve_points(self, client, quantity=10):
        booking_id = create_booking(client, quantity=quantity).json()["id"]
        client.post(f"/bookings/{booking_id}/status", headers=ADMIN, json={"status": "approved"})

    def test_withdrawal_flow(self, client):
        """Request, reject, and see the points come back."""
        self.approve_points(client)

        balance = client.get(f"/partners/{SEED_PARTNER_ID}/balance").json()
        assert balance["available"] == 5000

        response = client.post("/withdrawals", json={
            "partner_id": str(SEED_PARTNER_ID), "upi_id": "anil@okhdfc",
        })
        assert response.status_code == 201
        withdrawal = response.json()
        assert withdrawal["points"] == 5000
        assert float(withdrawal["amount"]) == 500.0
        assert withdrawal["status"] == "pending"

        balance = client.get(f"/partners/{SEED_PARTNER_ID}/balance").json()
        assert balance["available"] == 0

        rejected = client.post(
            f"/withdrawals/{withdrawal['id']}/status", headers=ADMIN, json={"status": "rejected"},
        )
        assert rejected.json()["status"] == "rejected"

        balance = client.get(f"/partners/{SEED_PARTNER_ID}/balance").json()
        assert balance["available"] == 5000

    def test_insufficient_balance(self, client):
        self.approve_points(client, quantity=1)

        response = client.post("/withdrawals", json={
            "partner_id": str(SEED_PARTNER_ID), "upi_id": "anil@okhdfc",
        })

        assert response.status_code == 400
        assert response.json()["detail"]["kind"] == "InsufficientBalance"

    def test_invalid_destination(self, client):
        self.approve_points(client)

        response = client.post("/withdrawals", json={
            "partner_id": str(SEED_PARTNER_ID), "upi_id": "anil.okhdfc",
        })

        assert response.status_code == 400
        assert response.json()["detail"]["kind"] == "InvalidDestination"

    def test_unknown_withdrawal(self, client):
        response = client.post(f"/withdrawals/{UNKNOWN_ID}/status", headers=ADMIN, json={"status": "approved"})

        assert response.status_code == 404

    def test_partner_summary_and_admin_overview(self, client):
        self.approve_points(client)
        create_booking(client, quantity=1)
        client.post("/withdrawals", json={"partner_id": str(SEED_PARTNER_ID), "upi_id": "anil@okhdfc"})

        summary = client.get(f"/partners/{SEED_PARTNER_ID}/summary").json()
        assert summary["total_bookings"] == 2
        assert summary["waiting_bookings"] == 1
        assert summary["balance"]["redeemed"] == 5000

        assert client.get("/admin/overview", headers=PARTNER).status_code == 403
        overview = client.get("/admin/overview", headers=ADMIN).json()
        assert overview["waiting_bookings"] == 1
        assert overview["pending_withdrawals"] == 1
        assert overview["points_paid_out"] == 0
