"""Order lifecycle over HTTP."""

import uuid
from decimal import Decimal


def _create_order(client, kind, warehouse, **extra):
    resp = client.post("/orders/", json={"kind": kind, "warehouse_id": warehouse["id"], **extra})
    assert resp.status_code == 201, resp.text
    return resp.json()


def _add_line(client, order, product, quantity, **extra):
    return client.post(
        f"/orders/{order['id']}/lines",
        json={"product_id": product["id"], "quantity": quantity, **extra},
    )


def _availability(client, product, warehouse):
    return client.get(
        "/inventory/availability",
        params={"product_id": product["id"], "warehouse_id": warehouse["id"]},
    ).json()


class TestPurchaseOrder:
    def test_receive_adds_stock(self, client, catalog):
        order = _create_order(client, "PURCHASE", catalog["wh1"], currency="usd")
        assert order["status"] == "OPEN"
        assert order["currency"] == "USD"

        resp = _add_line(client, order, catalog["p1"], 3, unit_price="10.00", tax_rate="0.16")
        assert resp.status_code == 201
        resp = _add_line(client, order, catalog["p2"], 2, unit_price="2.50")
        body = resp.json()
        assert Decimal(body["subtotal"]) == Decimal("35.00")
        assert Decimal(body["tax"]) == Decimal("4.80")
        assert Decimal(body["total"]) == Decimal("39.80")
        assert [ln["product_sku"] for ln in body["lines"]] == ["P-101", "P-102"]

        resp = client.post(f"/orders/{order['id']}/fulfill")
        assert resp.status_code == 200
        assert resp.json()["status"] == "RECEIVED"

        assert _availability(client, catalog["p1"], catalog["wh1"])["quantity"] == 3
        mvs = client.get("/inventory/movements", params={"reference_id": order["id"]}).json()
        assert sorted(m["quantity"] for m in mvs) == [2, 3]
        assert {m["movement_type"] for m in mvs} == {"IN"}

    def test_remove_line_recomputes_totals(self, client, catalog):
        order = _create_order(client, "PURCHASE", catalog["wh1"])
        _add_line(client, order, catalog["p1"], 3, unit_price="10.00")
        body = _add_line(client, order, catalog["p2"], 2, unit_price="2.50").json()
        line_id = body["lines"][1]["id"]

        resp = client.delete(f"/orders/{order['id']}/lines/{line_id}")
        assert resp.status_code == 200
        assert Decimal(resp.json()["total"]) == Decimal("30.00")


class TestSalesOrder:
    def _stocked_order(self, client, catalog, move):
        move(catalog["p1"], catalog["wh1"], "IN", 10, "PURCHASE")
        move(catalog["p2"], catalog["wh1"], "IN", 10, "PURCHASE")
        order = _create_order(client, "SALES", catalog["wh1"])
        _add_line(client, order, catalog["p1"], 2, unit_price="5.00")
        _add_line(client, order, catalog["p2"], 3, unit_price="5.00")
        return order

    def test_lines_reserve_stock(self, client, catalog, move):
        self._stocked_order(client, catalog, move)
        avail = _availability(client, catalog["p1"], catalog["wh1"])
        assert (avail["quantity"], avail["reserved_quantity"], avail["available"]) == (10, 2, 8)

    def test_line_beyond_availability_is_409(self, client, catalog, move):
        move(catalog["p1"], catalog["wh1"], "IN", 1, "PURCHASE")
        order = _create_order(client, "SALES", catalog["wh1"])
        resp = _add_line(client, order, catalog["p1"], 2)
        assert resp.status_code == 409
        assert resp.json()["available"] == 1

    def test_deliver_once(self, client, catalog, move):
        order = self._stocked_order(client, catalog, move)

        resp = client.post(f"/orders/{order['id']}/fulfill")
        assert resp.status_code == 200
        assert resp.json()["status"] == "COMPLETED"

        again = client.post(f"/orders/{order['id']}/fulfill")
        assert again.status_code == 409
        assert again.json()["code"] == "concurrent_modification"

        mvs = client.get("/inventory/movements", params={"reference_id": order["id"]}).json()
        assert sorted((m["movement_type"], m["quantity"]) for m in mvs) == [("OUT", 2), ("OUT", 3)]
        avail = _availability(client, catalog["p1"], catalog["wh1"])
        assert (avail["quantity"], avail["reserved_quantity"]) == (8, 0)

    def test_cancel_releases(self, client, catalog, move):
        order = self._stocked_order(client, catalog, move)

        resp = client.post(f"/orders/{order['id']}/cancel")
        assert resp.status_code == 200
        assert resp.json()["status"] == "CANCELLED"
        assert _availability(client, catalog["p1"], catalog["wh1"])["reserved_quantity"] == 0

        resp = _add_line(client, order, catalog["p"], 1)
        assert resp.status_code == 400

    def test_counterparty_round_trip(self, client, catalog):
        order = _create_order(client, "SALES", catalog["wh1"], counterparty="Cliente Mostrador")
        assert order["counterparty"] == "Cliente Mostrador"
        _create_order(client, "SALES", catalog["wh1"])

        found = client.get("/orders/", params={"counterparty": "Cliente Mostrador"}).json()
        assert [o["id"] for o in found] == [order["id"]]

    def test_list_by_status(self, client, catalog, move):
        order = self._stocked_order(client, catalog, move)
        _create_order(client, "PURCHASE", catalog["wh1"])
        client.post(f"/orders/{order['id']}/fulfill")

        completed = client.get("/orders/", params={"status": "COMPLETED"}).json()
        assert [o["id"] for o in completed] == [order["id"]]
        purchases = client.get("/orders/", params={"kind": "PURCHASE"}).json()
        assert len(purchases) == 1


class TestOrderErrors:
    def test_unknown_order_is_404(self, client, catalog):
        resp = client.get(f"/orders/{uuid.uuid4()}")
        assert resp.status_code == 404
        assert resp.json()["code"] == "not_found"

    def test_fulfill_without_lines_is_400(self, client, catalog):
        order = _create_order(client, "PURCHASE", catalog["wh1"])
        resp = client.post(f"/orders/{order['id']}/fulfill")
        assert resp.status_code == 400

    def test_unknown_kind_is_422(self, client, catalog):
        resp = client.post("/orders/", json={"kind": "RENTAL", "warehouse_id": catalog["wh1"]["id"]})
        assert resp.status_code == 422
