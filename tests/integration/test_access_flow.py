"""
Integration tests for the tiered access flow through the gateway.
"""

import pytest
from fastapi.testclient import TestClient
from unittest.mock import AsyncMock, MagicMock, patch

from service_gateway.app.main import GatewayService
from shared.config import get_config
from shared.test_helpers import StripeLike, TestDataFactory, TestEnvironment


SUGGESTION = "Add a visible 2px outline on :focus for every interactive element in the nav bar."


class TestAccessFlow:
    """Integration tests for the token, gate and billing flow."""

    @pytest.fixture
    def gateway_service(self):
        config = get_config(
            "gateway",
            8000,
            **{**TestEnvironment.get_mock_config(), "stripe_secret_key": "sk_test_123"},
        )
        service = GatewayService(config)
        service.completion_client.complete = AsyncMock(return_value=SUGGESTION)
        return service

    @pytest.fixture
    def client(self, gateway_service):
        return TestClient(gateway_service.app)

    @pytest.fixture
    def revenue_sink(self, gateway_service):
        sink = MagicMock()
        gateway_service.revenue_events.add_sink(sink)
        return sink

    def issue(self, client, **claims):
        response = client.post("/auth/token", json=claims)
        assert response.status_code == 200
        return {"Authorization": f"Bearer {response.json()['access_token']}"}

    def test_spend_buy_and_spend_again(self, client, gateway_service, revenue_sink):
        headers = self.issue(client, user_id="clinic-1", email="ops@clinic.test", plan="compliance", credits=1)
        fix = {"violation_type": "focusFix", "element": "<a href='/'>Home</a>", "vertical": "healthcare"}

        # 1. Spend the only credit.
        first = client.post("/api/v1/ai/fixes", json=fix, headers=headers)
        assert first.status_code == 200
        assert first.json()["credits"]["balance"] == 0

        # 2. Out of credits.
        denied = client.post("/api/v1/ai/fixes", json=fix, headers=headers)
        assert denied.status_code == 402
        assert denied.json()["details"]["remaining"] == 0

        # 3. Buy a starter package.
        payment_client = gateway_service.payment_client
        with patch.object(payment_client, "find_customer", new_callable=AsyncMock) as find_customer, \
                patch.object(payment_client, "create_customer", new_callable=AsyncMock) as create_customer, \
                patch.object(payment_client, "create_payment_intent", new_callable=AsyncMock) as create_intent:
            find_customer.return_value = None
            create_customer.return_value = StripeLike(id="cus_clinic")
            create_intent.return_value = TestDataFactory.create_payment_intent("pi_clinic")

            purchase = client.post(
                "/billing/credits",
                json={"package": "starter", "payment_method_id": "pm_card_visa"},
                headers=headers,
            )

        assert purchase.status_code == 200
        assert purchase.json()["balance"] == 100
        new_headers = {"Authorization": f"Bearer {purchase.json()['access_token']}"}

        # 4. The provider's webhook for the same payment does not credit again.
        event = TestDataFactory.create_credit_purchase_event("pi_clinic", "clinic-1", 100)
        with patch.object(payment_client, "construct_webhook_event", return_value=event):
            webhook = client.post("/billing/webhook", content=b"{}", headers={"Stripe-Signature": "t=1,v1=sig"})
        assert webhook.status_code == 200
        assert webhook.json()["credited"] is False

        # 5. Spend again with the refreshed token.
        again = client.post("/api/v1/ai/fixes", json=fix, headers=new_headers)
        assert again.status_code == 200
        assert again.json()["credits"]["balance"] == 99

        recorded = [call.args[0]["type"] for call in revenue_sink.call_args_list]
        assert recorded.count("ai_fix_generated") == 2
        assert "credits_purchased" in recorded

    def test_developer_upgrade_path(self, client, gateway_service, revenue_sink):
        headers = self.issue(client, user_id="dev-7", email="dev@startup.test", plan="developer", credits=50)

        denied = client.post(
            "/api/v1/ai/fixes",
            json={"violation_type": "altText", "element": "<img>"},
            headers=headers,
        )
        assert denied.status_code == 403
        assert denied.json()["details"]["upgrade_url"] == "/pricing"

        payment_client = gateway_service.payment_client
        with patch.object(payment_client, "find_customer", new_callable=AsyncMock) as find_customer, \
                patch.object(payment_client, "create_customer", new_callable=AsyncMock) as create_customer, \
                patch.object(payment_client, "create_subscription", new_callable=AsyncMock) as create_subscription:
            find_customer.return_value = None
            create_customer.return_value = StripeLike(id="cus_dev7")
            create_subscription.return_value = TestDataFactory.create_subscription("sub_dev7")

            response = client.post(
                "/billing/subscriptions",
                json={"plan": "compliance", "payment_method_id": "pm_card_visa"},
                headers=headers,
            )

        assert response.status_code == 200
        assert response.json()["plan"] == "compliance"
        assert response.json()["amount"] == 29900

        event = revenue_sink.call_args_list[-1].args[0]
        assert event["type"] == "subscription_created"
        assert event["user_id"] == "dev-7"
        assert event["target_plan"] == "compliance"

        # Once the plan changes, a token for the new tier reaches AI fixes with the same balance.
        upgraded = self.issue(client, user_id="dev-7", email="dev@startup.test", plan="compliance", credits=0)
        allowed = client.post(
            "/api/v1/ai/fixes",
            json={"violation_type": "altText", "element": "<img>"},
            headers=upgraded,
        )
        assert allowed.status_code == 200
        assert allowed.json()["credits"]["balance"] == 49
