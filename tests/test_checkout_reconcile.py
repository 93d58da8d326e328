import json

import pytest

from conftest import WEBHOOK_SECRET, auth_headers, make_product
from models.cart import CartItem
from models.log import Log
from models.order import Order, PaymentStatus
from models.product import Product

SHIPPING = {
    "shipping_address": {"street": "12 Marina Road", "city": "Lagos", "country": "Nigeria"},
    "phone": "+2348012345678",
}


@pytest.fixture()
def pending_order(client, db, seller, buyer):
    """Product A (10.00 x 2) and Product B (5.00 x 1) checked out, awaiting payment."""
    a = make_product(db, seller, name="Product A", price=10.0, quantity=5)
    b = make_product(db, seller, name="Product B", price=5.0, quantity=3)
    for product, quantity in ((a, 2), (b, 1)):
        client.post("/cart/add", json={"product_id": product.id, "quantity": quantity}, headers=auth_headers(buyer))
    reference = client.post("/payments/initiate", json=SHIPPING, headers=auth_headers(buyer)).json()["reference"]
    return {"reference": reference, "a": a.id, "b": b.id}


def _stock(db, product_id):
    db.expire_all()
    return db.get(Product, product_id).quantity


def _order(db, reference):
    db.expire_all()
    return db.query(Order).filter(Order.payment_reference == reference).one()


def _webhook(client, reference, amount=25.0, status="successful", event="charge.completed", secret=WEBHOOK_SECRET):
    payload = {
        "event": event,
        "data": {"tx_ref": reference, "amount": amount, "status": status, "flw_ref": "FLW-WEBHOOK-77"},
    }
    headers = {"verif-hash": secret} if secret is not None else {}
    return client.post("/payments/webhook", content=json.dumps(payload), headers=headers)


class TestVerify:
    def test_successful_payment_completes_order(self, client, db, buyer, pending_order, gateway):
        reference = pending_order["reference"]

        response = client.get(f"/payments/verify/{reference}", headers=auth_headers(buyer))

        assert response.status_code == 200
        assert response.json()["order"]["payment_status"] == "completed"
        assert gateway.requests[-1].url.params["tx_ref"] == reference

        order = _order(db, reference)
        assert order.payment_status == PaymentStatus.COMPLETED
        assert order.flutterwave_ref == "FLW-MOCK-1234"
        assert order.paid_at is not None
        assert _stock(db, pending_order["a"]) == 3
        assert _stock(db, pending_order["b"]) == 2
        assert db.query(CartItem).count() == 0

    def test_repeated_verify_decrements_stock_once(self, client, db, buyer, pending_order):
        reference = pending_order["reference"]

        first = client.get(f"/payments/verify/{reference}", headers=auth_headers(buyer))
        second = client.get(f"/payments/verify/{reference}", headers=auth_headers(buyer))

        assert first.status_code == second.status_code == 200
        assert second.json()["order"]["payment_status"] == "completed"
        assert _stock(db, pending_order["a"]) == 3
        assert _stock(db, pending_order["b"]) == 2

    def test_repeated_verify_does_not_clear_a_new_cart(self, client, db, seller, buyer, pending_order):
        reference = pending_order["reference"]
        client.get(f"/payments/verify/{reference}", headers=auth_headers(buyer))

        client.post("/cart/add", json={"product_id": pending_order["b"], "quantity": 1}, headers=auth_headers(buyer))
        client.get(f"/payments/verify/{reference}", headers=auth_headers(buyer))

        assert db.query(CartItem).count() == 1

    def test_unsuccessful_transaction_marks_order_failed(self, client, db, buyer, pending_order, gateway):
        gateway.verify_response = (200, {"status": "success", "data": {"status": "failed", "flw_ref": "FLW-X"}})
        reference = pending_order["reference"]

        response = client.get(f"/payments/verify/{reference}", headers=auth_headers(buyer))

        assert response.status_code == 400
        assert response.json()["detail"] == "Payment verification failed"
        assert _order(db, reference).payment_status == PaymentStatus.FAILED
        assert _stock(db, pending_order["a"]) == 5
        assert db.query(CartItem).count() == 2

    def test_failed_order_is_not_reverified(self, client, db, buyer, pending_order, gateway):
        gateway.verify_response = (200, {"status": "success", "data": {"status": "failed"}})
        reference = pending_order["reference"]
        client.get(f"/payments/verify/{reference}", headers=auth_headers(buyer))

        gateway.verify_response = (200, {"status": "success", "data": {"status": "successful"}})
        response = client.get(f"/payments/verify/{reference}", headers=auth_headers(buyer))

        assert response.status_code == 400
        assert _order(db, reference).payment_status == PaymentStatus.FAILED

    def test_gateway_outage_leaves_order_pending(self, client, db, buyer, pending_order, gateway):
        gateway.verify_response = (503, {"status": "error", "message": "Service unavailable"})
        reference = pending_order["reference"]

        response = client.get(f"/payments/verify/{reference}", headers=auth_headers(buyer))

        assert response.status_code == 502
        assert _order(db, reference).payment_status == PaymentStatus.PENDING

    def test_failed_verification_is_audited(self, client, db, buyer, pending_order, gateway):
        gateway.verify_response = (200, {"status": "success", "data": {"status": "failed"}})
        reference = pending_order["reference"]

        client.get(f"/payments/verify/{reference}", headers=auth_headers(buyer))

        entry = db.query(Log).filter(Log.action == "PAYMENT_VERIFY").one()
        assert entry.status == "FAIL"
        assert entry.meta == {"reference": reference, "reason": "Payment verification failed"}

    def test_malformed_verification_reply_marks_order_failed(self, client, db, buyer, pending_order, gateway):
        gateway.verify_response = (200, {"status": "success", "data": "x"})
        reference = pending_order["reference"]

        response = client.get(f"/payments/verify/{reference}", headers=auth_headers(buyer))

        assert response.status_code == 400
        assert _order(db, reference).payment_status == PaymentStatus.FAILED
        assert _stock(db, pending_order["a"]) == 5

    def test_unknown_reference(self, client, buyer):
        response = client.get("/payments/verify/PAY_0_deadbeef", headers=auth_headers(buyer))
        assert response.status_code == 404

    def test_other_users_reference_is_not_found(self, client, seller, pending_order):
        response = client.get(f"/payments/verify/{pending_order['reference']}", headers=auth_headers(seller))
        assert response.status_code == 404


class TestWebhook:
    def test_charge_completed_applies_effects(self, client, db, pending_order):
        reference = pending_order["reference"]

        response = _webhook(client, reference)

        assert response.status_code == 200
        order = _order(db, reference)
        assert order.payment_status == PaymentStatus.COMPLETED
        assert order.flutterwave_ref == "FLW-WEBHOOK-77"
        assert _stock(db, pending_order["a"]) == 3
        assert db.query(CartItem).count() == 0

    def test_duplicate_delivery_is_acknowledged_without_effects(self, client, db, buyer, pending_order):
        reference = pending_order["reference"]
        _webhook(client, reference)
        client.post("/cart/add", json={"product_id": pending_order["b"], "quantity": 1}, headers=auth_headers(buyer))

        response = _webhook(client, reference)

        assert response.status_code == 200
        assert _stock(db, pending_order["a"]) == 3
        assert _stock(db, pending_order["b"]) == 2
        assert db.query(CartItem).count() == 1

    def test_webhook_after_verify_is_a_no_op(self, client, db, buyer, pending_order):
        reference = pending_order["reference"]
        client.get(f"/payments/verify/{reference}", headers=auth_headers(buyer))

        assert _webhook(client, reference).status_code == 200
        assert _stock(db, pending_order["a"]) == 3

    def test_wrong_signature_rejected_before_lookup(self, client, db, pending_order):
        # An unknown reference would be a 404 if the lookup ran
        response = _webhook(client, "PAY_unknown", secret="not-the-secret")

        assert response.status_code == 401
        assert _order(db, pending_order["reference"]).payment_status == PaymentStatus.PENDING

    def test_missing_signature_rejected(self, client, db, pending_order):
        response = _webhook(client, pending_order["reference"], secret=None)

        assert response.status_code == 401
        assert _order(db, pending_order["reference"]).payment_status == PaymentStatus.PENDING

    def test_rejected_signature_is_audited(self, client, db, pending_order):
        _webhook(client, pending_order["reference"], secret="not-the-secret")

        entry = db.query(Log).filter(Log.action == "PAYMENT_WEBHOOK").one()
        assert entry.status == "FAIL"
        assert entry.user_id is None

    def test_unknown_reference_is_not_found(self, client):
        assert _webhook(client, "PAY_unknown").status_code == 404

    def test_amount_mismatch_is_acknowledged_without_mutation(self, client, db, pending_order):
        reference = pending_order["reference"]

        response = _webhook(client, reference, amount=1.0)

        assert response.status_code == 200
        assert _order(db, reference).payment_status == PaymentStatus.PENDING
        assert _stock(db, pending_order["a"]) == 5

    def test_unsuccessful_status_is_acknowledged_without_mutation(self, client, db, pending_order):
        reference = pending_order["reference"]

        response = _webhook(client, reference, status="failed")

        assert response.status_code == 200
        assert _order(db, reference).payment_status == PaymentStatus.PENDING

    def test_other_events_are_acknowledged(self, client, db, pending_order):
        reference = pending_order["reference"]

        response = _webhook(client, reference, event="transfer.completed")

        assert response.status_code == 200
        assert _order(db, reference).payment_status == PaymentStatus.PENDING

    def test_failed_order_is_not_revived(self, client, db, buyer, pending_order, gateway):
        gateway.verify_response = (200, {"status": "success", "data": {"status": "failed"}})
        reference = pending_order["reference"]
        client.get(f"/payments/verify/{reference}", headers=auth_headers(buyer))

        assert _webhook(client, reference).status_code == 200
        assert _order(db, reference).payment_status == PaymentStatus.FAILED
        assert _stock(db, pending_order["a"]) == 5
