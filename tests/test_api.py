def _create_client(api, name="Acme", opening_debt_cents=0):
    response = api.post("/api/v1/clients", json={"name": name, "opening_debt_cents": opening_debt_cents})
    assert response.status_code == 201, response.text
    return response.json()


def _create_product(api, sku, unit_price_cents):
    response = api.post(
        "/api/v1/products",
        json={"name": f"Product {sku}", "sku": sku, "unit_price_cents": unit_price_cents},
    )
    assert response.status_code == 201, response.text
    return response.json()


def test_root(api):
    assert api.get("/").status_code == 200


def test_full_billing_flow(api):
    client = _create_client(api)
    widget = _create_product(api, "W-1", 1000)
    gadget = _create_product(api, "G-1", 500)

    response = api.post(
        "/api/v1/orders",
        json={
            "client_id": client["id"],
            "items": [
                {"product_id": widget["id"], "qty": 2},
                {"product_id": gadget["id"], "qty": 1},
            ],
            "discount_percent": 10,
            "tax_percent": 5,
        },
    )
    assert response.status_code == 201, response.text
    detail = response.json()
    assert detail["total_cents"] == 2363
    assert detail["order"]["status"] == "draft"
    order_id = detail["order"]["id"]

    assert api.post(f"/api/v1/orders/{order_id}/confirm").json()["status"] == "confirmed"
    assert api.get(f"/api/v1/clients/{client['id']}").json()["debt_cents"] == 2363

    response = api.post(f"/api/v1/orders/{order_id}/invoice")
    assert response.status_code == 201, response.text
    invoice = response.json()
    assert invoice["total_cents"] == 2363

    again = api.post(f"/api/v1/orders/{order_id}/invoice")
    assert again.status_code == 409
    assert again.json()["error"] == "conflict"

    assert api.post(f"/api/v1/invoices/{invoice['id']}/issue").json()["status"] == "issued"

    payment = api.post(f"/api/v1/invoices/{invoice['id']}/payments", json={"amount_cents": 1363})
    assert payment.status_code == 201, payment.text

    detail = api.get(f"/api/v1/invoices/{invoice['id']}").json()
    assert detail["invoice"]["status"] == "partially_paid"
    assert detail["paid_cents"] == 1363
    assert detail["balance_cents"] == 1000

    assert api.get(f"/api/v1/clients/{client['id']}").json()["debt_cents"] == 1000

    void = api.post(f"/api/v1/invoices/{invoice['id']}/void")
    assert void.status_code == 409

    reverse = api.post(f"/api/v1/invoices/payments/{payment.json()['id']}/reverse")
    assert reverse.status_code == 201, reverse.text
    assert reverse.json()["amount_cents"] == -1363

    history = api.get(f"/api/v1/clients/{client['id']}/debt").json()
    assert history["total"] == 3
    assert [row["type"] for row in history["data"]] == ["payment_reversal", "payment_credit", "order_charge"]

    dashboard = api.get("/api/v1/dashboard", params={"range": "all"}).json()
    assert dashboard["total_orders_month"] == 1
    assert dashboard["outstanding_invoices_count"] == 1


def test_list_responses_have_data_and_total(api):
    for i in range(3):
        _create_client(api, name=f"Shop {i}")

    response = api.get("/api/v1/clients", params={"limit": 2})
    body = response.json()
    assert response.status_code == 200
    assert body["total"] == 3
    assert len(body["data"]) == 2

    body = api.get("/api/v1/clients", params={"search": "shop 1"}).json()
    assert body["total"] == 1


def test_debt_adjustment_endpoint(api):
    client = _create_client(api, opening_debt_cents=500)

    response = api.post(f"/api/v1/clients/{client['id']}/debt", json={"delta_cents": -200, "notes": "goodwill"})

    assert response.status_code == 201, response.text
    body = response.json()
    assert body["client"]["debt_cents"] == 300
    assert body["adjustment"]["previous_debt_cents"] == 500
    assert body["adjustment"]["new_debt_cents"] == 300

    zero = api.post(f"/api/v1/clients/{client['id']}/debt", json={"delta_cents": 0})
    assert zero.status_code == 400
    assert zero.json()["error"] == "validation_error"

    listing = api.get("/api/v1/clients/debt-adjustments", params={"client_id": client["id"]}).json()
    assert listing["total"] == 2


def test_not_found_mapping(api):
    response = api.get("/api/v1/orders/9999")
    assert response.status_code == 404
    body = response.json()
    assert body["success"] is False
    assert body["error"] == "not_found"


def test_invalid_state_mapping(api):
    client = _create_client(api)
    response = api.post(
        "/api/v1/invoices",
        json={"client_id": client["id"], "items": [{"name": "Setup", "unit_price_cents": 100, "qty": 1}]},
    )
    assert response.status_code == 201, response.text
    invoice_id = response.json()["invoice"]["id"]

    response = api.post(f"/api/v1/invoices/{invoice_id}/payments", json={"amount_cents": 100})
    assert response.status_code == 409
    assert response.json()["error"] == "invalid_state"


def test_payment_with_explicit_method(api):
    client = _create_client(api)
    response = api.post(
        "/api/v1/invoices",
        json={"client_id": client["id"], "items": [{"name": "Setup", "unit_price_cents": 1000, "qty": 1}]},
    )
    invoice_id = response.json()["invoice"]["id"]
    assert api.post(f"/api/v1/invoices/{invoice_id}/issue").status_code == 200

    response = api.post(
        f"/api/v1/invoices/{invoice_id}/payments",
        json={"amount_cents": 400, "method": "CASH"},
    )
    assert response.status_code == 201, response.text
    assert response.json()["method"] == "CASH"

    response = api.post(
        f"/api/v1/invoices/{invoice_id}/payments",
        json={"amount_cents": 600, "method": "TRANSFER"},
    )
    assert response.status_code == 201, response.text

    detail = api.get(f"/api/v1/invoices/{invoice_id}").json()
    assert detail["invoice"]["status"] == "paid"
    assert detail["balance_cents"] == 0
    assert api.get(f"/api/v1/clients/{client['id']}").json()["debt_cents"] == 0


def test_request_validation(api):
    response = api.post("/api/v1/products", json={"name": "Bad", "unit_price_cents": -5})
    assert response.status_code == 422


def test_product_delete_refused_when_used(api):
    client = _create_client(api)
    product = _create_product(api, "P-9", 250)
    api.post(
        "/api/v1/orders",
        json={"client_id": client["id"], "items": [{"product_id": product["id"], "qty": 1}]},
    )

    response = api.delete(f"/api/v1/products/{product['id']}")
    assert response.status_code == 409

    response = api.post(f"/api/v1/products/{product['id']}/deactivate")
    assert response.json()["active"] is False
