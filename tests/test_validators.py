from decimal import Decimal

from backoffice import schemas, validators


def line(product_id="prod_1", quantity=1):
    return schemas.OrderLineIn(product_id=product_id, quantity=quantity)


def test_valid_lines():
    assert validators.validate_order_lines([line("a"), line("b", 3)]) == (True, "")


def test_line_rules():
    assert validators.validate_order_lines([line("a"), line("a")]) == (False, "Order contains duplicate products")

    ok, message = validators.validate_order_lines([line(quantity=validators.MAX_LINE_QUANTITY + 1)])
    assert not ok
    assert "exceeds maximum" in message

    too_many = [line(f"p{i}") for i in range(validators.MAX_ORDER_LINES + 1)]
    assert validators.validate_order_lines(too_many)[0] is False


def test_empty_orders_and_zero_quantities_fail_schema_validation(client, products, staff_headers):
    cola = products["cola"]
    assert client.post("/api/orders", json={"items": [], "total": "0"}, headers=staff_headers).status_code == 422

    zero = {"items": [{"productId": cola.id, "quantity": 0}], "total": "0"}
    assert client.post("/api/orders", json=zero, headers=staff_headers).status_code == 422


def test_claimed_total_tolerates_a_cent():
    assert validators.validate_claimed_total(Decimal("10.00"), Decimal("10.01"))[0] is True
    ok, message = validators.validate_claimed_total(Decimal("10.00"), Decimal("9.90"))
    assert not ok
    assert message.startswith("Order total mismatch")


def test_health(client):
    assert client.get("/healthz").json() == {"status": "healthy"}
