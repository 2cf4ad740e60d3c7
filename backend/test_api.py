"""HTTP surface: status codes and the error mapping, end to end."""
from decimal import Decimal

from sqlalchemy.exc import OperationalError, SQLAlchemyError

from optistore.services import identifier_service, order_writer

D = Decimal

ORDER_BODY = {
    "items": [
        {"item_name": "Ray-Ban Frame", "rate": "500", "qty": 1, "item_code": "FRM001"},
        {"item_name": "Single Vision Lens", "rate": "200", "qty": 2, "tax_percent": "5"},
    ],
    "advances": {"cash": "100", "card_upi": "50", "other": "0"},
}


def _prescription(client, **overrides):
    body = {"name": "Anita Rao", "mobile_no": "9876543210"}
    body.update(overrides)
    resp = client.post("/prescriptions", json=body)
    assert resp.status_code == 201, resp.text
    return resp.json()


def test_health(client):
    assert client.get("/health").json()["status"] == "ok"


def test_create_order_returns_computed_snapshot(client):
    rx = _prescription(client)
    resp = client.post("/orders", json={**ORDER_BODY, "order_no": "ORD-100", "prescription_id": rx["id"]})

    assert resp.status_code == 201, resp.text
    data = resp.json()
    assert data["created"] is True
    assert data["snapshot"]["source"] == "computed"
    assert D(data["snapshot"]["payment_estimate"]) == D("920")
    assert D(data["snapshot"]["balance"]) == D("770")
    assert data["warnings"] == []

    order = client.get(f"/orders/{data['order_id']}").json()
    assert len(order["items"]) == 2
    assert order["payment"]["source"] == "from_store"
    assert D(order["payment"]["balance"]) == D("770")


def test_duplicate_order_number_is_409(client):
    rx = _prescription(client)
    body = {**ORDER_BODY, "order_no": "ORD-101", "prescription_id": rx["id"]}
    assert client.post("/orders", json=body).status_code == 201

    resp = client.post("/orders", json=body)
    assert resp.status_code == 409
    assert "ORD-101" in resp.json()["detail"]


def test_validation_error_names_the_field(client):
    rx = _prescription(client)
    resp = client.post("/orders", json={**ORDER_BODY, "order_no": "ORD 1", "prescription_id": rx["id"]})
    assert resp.status_code == 400
    assert resp.json()["detail"].startswith("order_no:")


def test_partial_write_failure_is_generic_500(client, monkeypatch):
    rx = _prescription(client)

    def broken_insert(*args):
        raise SQLAlchemyError("items insert failed")

    monkeypatch.setattr(order_writer, "_insert_items", broken_insert)

    resp = client.post("/orders", json={**ORDER_BODY, "order_no": "ORD-102", "prescription_id": rx["id"]})
    assert resp.status_code == 500
    assert resp.json()["detail"] == "Save failed, please retry."
    assert client.get("/orders", params={"prescription_id": rx["id"]}).json() == []


def test_order_card_creates_then_updates(client):
    rx = _prescription(client)
    body = {**ORDER_BODY, "prescription_id": rx["id"], "discount": {"value": "40", "kind": "fixed"}}

    first = client.post("/orders/card", json=body)
    assert first.status_code == 200, first.text
    assert first.json()["created"] is True
    assert D(first.json()["snapshot"]["discount_amount"]) == D("40")

    second = client.post("/orders/card", json={**body, "header": {"status": "Ready"}})
    assert second.json()["created"] is False
    assert second.json()["order_id"] == first.json()["order_id"]

    orders = client.get("/orders", params={"prescription_id": rx["id"]}).json()
    assert len(orders) == 1
    assert orders[0]["status"] == "Ready"


def test_navigation(client):
    rx = _prescription(client)
    client.post("/orders", json={**ORDER_BODY, "order_no": "ORD-1", "prescription_id": rx["id"]})
    client.post("/orders", json={**ORDER_BODY, "order_no": "ORD-2", "prescription_id": rx["id"]})

    assert client.get("/orders/navigate/first").json()["order_no"] == "ORD-1"
    assert client.get("/orders/navigate/last").json()["order_no"] == "ORD-2"
    assert client.get("/orders/navigate/sideways").status_code == 400


def test_identifier_endpoint(client):
    resp = client.post("/identifiers/order")
    assert resp.status_code == 200
    assert resp.json()["value"].startswith("ORD")
    assert resp.json()["degraded"] is False

    assert client.post("/identifiers/invoice").status_code == 400


def test_customer_history_endpoints(client):
    rx = _prescription(client)
    body = {
        "customer": {"id": str(rx["id"]), "name": "Anita Rao", "mobile_no": "9876543210"},
        "item": {"id": "ORD-7:1:FRM001", "order_no": "ORD-7", "item_name": "Frame", "amount": "1500.00"},
    }
    first = client.post("/customer-history/deleted-items", json=body)
    assert first.status_code == 200
    assert first.json()["success"] is True

    again = client.post("/customer-history/deleted-items", json=body)
    assert again.status_code == 200
    assert again.json()["success"] is False

    found = client.get("/customer-history/by-field", params={"field": "reference_no", "value": "ORD-7"}).json()
    assert found["data"]["total_deleted_items"] == 1

    search = client.get("/customer-history/search", params={"q": "Anita"}).json()
    assert len(search["data"]) == 1

    page = client.get("/customer-history").json()
    assert page["total"] == 1


def test_untouched_card_keeps_stored_payment(client):
    rx = _prescription(client)
    body = {**ORDER_BODY, "prescription_id": rx["id"]}
    first = client.post("/orders/card", json=body).json()

    resend = {**body, "advances": {"cash": "999"}, "payment_untouched": True}
    resp = client.post("/orders/card", json=resend)

    assert resp.status_code == 200, resp.text
    data = resp.json()
    assert data["order_id"] == first["order_id"]
    assert data["snapshot"]["source"] == "from_store"
    assert D(data["snapshot"]["balance"]) == D("770")

    put = client.put(f"/orders/{first['order_id']}", json={**ORDER_BODY, "advances": {"cash": "5"}, "payment_untouched": True})
    assert put.json()["snapshot"]["source"] == "from_store"
    assert D(put.json()["snapshot"]["total_advance"]) == D("150")


def test_store_outage_on_rename_is_503(client, monkeypatch):
    rx = _prescription(client)
    created = client.post("/orders", json={**ORDER_BODY, "order_no": "ORD-200", "prescription_id": rx["id"]}).json()

    def outage(*args):
        raise OperationalError("SELECT", {}, Exception("server closed the connection"))

    monkeypatch.setattr(identifier_service, "check_number_exists", outage)
    resp = client.put(f"/orders/{created['order_id']}", json={**ORDER_BODY, "order_no": "ORD-201"})
    assert resp.status_code == 503
