from decimal import Decimal

from usdt_billing.chains.base import TransferCheck
from usdt_billing.services.settlement import PaymentSettlement


def test_health(client):
    assert client.get("/ops/health").json()["status"] == "healthy"


def test_readiness_requires_database_only(client):
    response = client.get("/ops/readyz")
    assert response.status_code == 200
    body = response.json()
    assert body["checks"]["database"]["status"] == "healthy"
    assert body["checks"]["redis"]["status"] in ("healthy", "degraded")


def test_metrics_count_payments_and_credit_flow(client, db_session, uid, auth_headers):
    transfer = TransferCheck(found=True, txid="trx_metrics", to_address="TDeposit", amount="10000000")
    PaymentSettlement(db_session).settle(uid, "trc20", "trx_metrics", transfer, Decimal("10"), 1000, 30)
    client.post("/credits/consume", headers=auth_headers, json={"count": 4})

    text = client.get("/ops/metrics").text

    assert "usdt_billing_users_total 1" in text
    assert "usdt_billing_pro_users 1" in text
    assert 'usdt_billing_payments_24h{chain="TRC20"} 1' in text
    assert 'usdt_billing_payments_24h{chain="BEP20"} 0' in text
    assert 'usdt_billing_credits_24h{type="grant"} 1000' in text
    assert 'usdt_billing_credits_24h{type="spend"} 4' in text
