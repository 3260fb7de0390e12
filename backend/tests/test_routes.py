"""
HTTP surface tests: authentication, role gates, error payloads and the
status codes each route returns.
"""

import pytest

from conftest import auth_headers, stock_of


class TestAuthentication:

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/orders"),
            ("GET", "/api/orders/1"),
            ("POST", "/api/orders/1/approve"),
            ("PUT", "/api/orders/1"),
            ("GET", "/api/stock-requests"),
            ("POST", "/api/stock-requests"),
            ("POST", "/api/branches"),
            ("POST", "/api/branches/transfer"),
            ("POST", "/api/branches/update-stock-manual"),
            ("POST", "/api/products"),
            ("GET", "/api/stock/movements"),
            ("GET", "/api/stock/reports/stock"),
        ],
    )
    def test_requires_auth(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path, json={})
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_invalid_token_rejected(self, client, db_session):
        resp = client.get("/api/orders", headers=auth_headers("not-a-token"))
        assert resp.status_code == 401

    def test_invalid_token_rejected_on_optional_auth(self, client, db_session):
        resp = client.post("/api/orders", json={}, headers=auth_headers("not-a-token"))
        assert resp.status_code == 401

    def test_validate_and_logout(self, client, branch_admin, branch_headers):
        resp = client.post("/api/auth/validate", headers=branch_headers)
        assert resp.status_code == 200
        assert resp.json["role"] == "admin_sucursal"
        assert resp.json["branch_id"] == branch_admin.branch_id

        assert client.post("/api/auth/logout", headers=branch_headers).status_code == 200
        assert client.get("/api/orders", headers=branch_headers).status_code == 401


class TestOrderRoutes:

    def _payload(self, branch, product, qty=2):
        return {
            "branch_id": branch.id,
            "items": [{"product_id": product.id, "quantity": qty, "unit_price_cents": 1500}],
            "payment_method": "efectivo",
            "delivery_method": "pickup",
            "customer": {"name": "Ana", "phone": "3415551234"},
        }

    def test_anonymous_create_returns_notification(self, client, branch, product, set_stock):
        set_stock(branch, product, 10)

        resp = client.post("/api/orders", json=self._payload(branch, product))

        assert resp.status_code == 201
        assert resp.json["order"]["status"] == "pending"
        notification = resp.json["notification"]
        assert notification["phone"] == "5491155550101"
        assert notification["link"].startswith("https://wa.me/5491155550101?text=")
        assert "Yerba 1kg" in notification["message"]
        assert stock_of(branch, product) == (8, 2)

    def test_unusable_branch_number_gives_null_notification(self, client, db_session, branch, product, set_stock):
        set_stock(branch, product, 10)
        branch.number = "123"
        db_session.commit()

        resp = client.post("/api/orders", json=self._payload(branch, product))

        assert resp.status_code == 201
        assert resp.json["notification"] is None

    def test_insufficient_stock_payload(self, client, branch, product, set_stock):
        set_stock(branch, product, 1)

        resp = client.post("/api/orders", json=self._payload(branch, product, qty=3))

        assert resp.status_code == 409
        assert resp.json["type"] == "InsufficientStockError"
        assert resp.json["details"]["available"] == 1
        assert resp.json["details"]["requested"] == 3

    def test_privileged_create_is_approved(self, client, branch, product, set_stock, branch_headers):
        set_stock(branch, product, 10)

        resp = client.post("/api/orders", json=self._payload(branch, product), headers=branch_headers)

        assert resp.status_code == 201
        assert resp.json["order"]["status"] == "approved"
        assert stock_of(branch, product) == (8, 0)

    def test_approve_flow(self, client, branch, product, set_stock, branch_headers, customer_headers):
        set_stock(branch, product, 10)
        order_id = client.post("/api/orders", json=self._payload(branch, product)).json["order"]["id"]

        assert client.post(f"/api/orders/{order_id}/approve", headers=customer_headers).status_code == 403
        resp = client.post(f"/api/orders/{order_id}/approve", headers=branch_headers)
        assert resp.status_code == 200
        assert resp.json["order"]["status"] == "approved"

        again = client.post(f"/api/orders/{order_id}/approve", headers=branch_headers)
        assert again.status_code == 409
        assert again.json["type"] == "StateConflictError"

    def test_update_items(self, client, branch, product, set_stock, branch_headers):
        set_stock(branch, product, 10)
        order_id = client.post("/api/orders", json=self._payload(branch, product)).json["order"]["id"]

        resp = client.put(
            f"/api/orders/{order_id}",
            json={"items": [{"product_id": product.id, "quantity": 4, "unit_price_cents": 1500}]},
            headers=branch_headers,
        )

        assert resp.status_code == 200
        assert resp.json["order"]["total_cents"] == 6000
        assert stock_of(branch, product) == (6, 4)

    def test_missing_order(self, client, branch_headers):
        assert client.get("/api/orders/999", headers=branch_headers).status_code == 404

    def test_sales_stats_and_detail(self, client, branch, product, set_stock, branch_headers):
        set_stock(branch, product, 10)
        client.post("/api/orders", json=self._payload(branch, product), headers=branch_headers)

        stats = client.get(f"/api/orders/stats/sales?branch_id={branch.id}", headers=branch_headers)
        detail = client.get(f"/api/orders/detail/sales?branch_id={branch.id}", headers=branch_headers)

        assert stats.status_code == 200
        assert detail.status_code == 200
        assert detail.json["metrics"]["total_orders"] == 1


class TestBranchRoutes:

    def test_public_branch_list(self, client, branch):
        resp = client.get("/api/branches")
        assert resp.status_code == 200
        assert resp.json["count"] == 1

    def test_transfer(self, client, branch, product, central_headers):
        resp = client.post(
            "/api/branches/transfer",
            json={"branch_id": branch.id, "product_id": product.id, "quantity": 12},
            headers=central_headers,
        )
        assert resp.status_code == 200
        assert resp.json["stock"]["quantity"] == 12
        assert resp.json["movement"]["quantity"] == 12

    def test_transfer_beyond_central(self, client, branch, product, central_headers):
        resp = client.post(
            "/api/branches/transfer",
            json={"branch_id": branch.id, "product_id": product.id, "quantity": 51},
            headers=central_headers,
        )
        assert resp.status_code == 409
        assert resp.json["type"] == "InsufficientCentralStockError"

    def test_manual_load_partial_is_207(self, client, branch, product, branch_headers):
        resp = client.post(
            "/api/branches/update-stock-manual",
            json={"branch_id": branch.id, "products": [
                {"product_id": product.id, "quantity": 3},
                {"product_id": 777, "quantity": 1},
            ]},
            headers=branch_headers,
        )
        assert resp.status_code == 207
        assert resp.json["success_count"] == 1
        assert len(resp.json["errors"]) == 1

    def test_manual_load_ok_is_200(self, client, branch, product, branch_headers):
        resp = client.post(
            "/api/branches/update-stock-manual",
            json={"branch_id": branch.id, "products": [{"product_id": product.id, "quantity": 3}]},
            headers=branch_headers,
        )
        assert resp.status_code == 200
        assert "errors" not in resp.json

    def test_create_branch_forbidden_for_branch_admin(self, client, branch_headers):
        resp = client.post("/api/branches", json={"name": "Sur", "number": "1"}, headers=branch_headers)
        assert resp.status_code == 403


class TestProductRoutes:

    def test_catalog_is_public(self, client, product):
        resp = client.get("/api/products")
        assert resp.status_code == 200
        assert resp.json["products"][0]["sku"] == "SKU-001"

    def test_create_requires_central_admin(self, client, db_session, branch_headers, central_headers):
        body = {"sku": "NEW-1", "name": "Termo", "price_cents": 12000}
        assert client.post("/api/products", json=body, headers=branch_headers).status_code == 403
        resp = client.post("/api/products", json=body, headers=central_headers)
        assert resp.status_code == 201
        assert resp.json["product"]["central_quantity"] == 0

    def test_branch_price_and_recalculate(self, client, branch, product, branch_headers):
        resp = client.put(f"/api/products/{product.id}/branch-price/{branch.id}",
                          json={"markup": 50}, headers=branch_headers)
        assert resp.status_code == 200

        resp = client.put(f"/api/products/branch-prices/recalculate/{branch.id}",
                          json={"rate": 2}, headers=branch_headers)
        assert resp.status_code == 200
        assert resp.json["updated"] == 1

        listing = client.get(f"/api/products?branch_id={branch.id}").json["products"]
        assert listing[0]["price_cents"] == 3000

    def test_recalculate_bad_rate(self, client, branch, branch_headers):
        resp = client.put(f"/api/products/branch-prices/recalculate/{branch.id}",
                          json={"rate": 0}, headers=branch_headers)
        assert resp.status_code == 400


class TestStockRequestRoutes:

    def test_full_cycle(self, client, branch, product, branch_headers, central_headers):
        resp = client.post("/api/stock-requests",
                           json={"items": [{"product_id": product.id, "quantity": 5}]},
                           headers=branch_headers)
        assert resp.status_code == 201
        request_id = resp.json["stock_request"]["id"]

        assert client.put(f"/api/stock-requests/{request_id}/approve", headers=branch_headers).status_code == 403
        assert client.put(f"/api/stock-requests/{request_id}/approve", headers=central_headers).status_code == 200
        resp = client.put(f"/api/stock-requests/{request_id}/fulfill", headers=central_headers)
        assert resp.status_code == 200
        assert resp.json["stock_request"]["status"] == "fulfilled"
        assert stock_of(branch, product) == (5, 0)

        again = client.put(f"/api/stock-requests/{request_id}/fulfill", headers=central_headers)
        assert again.status_code == 409


class TestStockRoutes:

    def test_movements_scoped_for_branch_admin(self, client, branch, other_branch, product,
                                               central_headers, branch_headers):
        client.post("/api/branches/transfer",
                    json={"branch_id": other_branch.id, "product_id": product.id, "quantity": 2},
                    headers=central_headers)

        resp = client.get(f"/api/stock/movements?branch_id={other_branch.id}", headers=branch_headers)

        assert resp.status_code == 200
        assert resp.json["count"] == 0

    def test_stock_report_central_only(self, client, branch, central_headers, branch_headers):
        assert client.get("/api/stock/reports/stock", headers=branch_headers).status_code == 403
        assert client.get("/api/stock/reports/stock", headers=central_headers).status_code == 200


class TestSystemRoutes:

    def test_health(self, client, db_session):
        resp = client.get("/health")
        assert resp.status_code == 200
