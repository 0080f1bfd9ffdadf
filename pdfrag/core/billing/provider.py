import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
import httpx
from pdfrag.config.settings import BillingConfig
from pdfrag.core.exceptions import UpstreamError
from pdfrag.models.billing import Account, Subscription, SubscriptionItem

logger = logging.getLogger(__name__)

class BillingProvider(ABC):
    @abstractmethod
    def create_customer(self, account: Account, idempotency_key: str) -> str:
        """Creates a billing customer and returns its reference."""
        pass

    @abstractmethod
    def list_active_subscriptions(self, customer_id: str, price_id: str) -> List[Subscription]:
        pass

    @abstractmethod
    def create_checkout_session(self, customer_id: Optional[str], account_id: str, price_id: str) -> str:
        """Starts a subscription checkout and returns its URL."""
        pass

    @abstractmethod
    def report_usage(self, subscription_item_id: str, quantity: int, idempotency_key: str) -> None:
        pass

class StripeBillingProvider(BillingProvider):
    """
    Stripe REST client (form-encoded requests over httpx).
    Mutating calls carry an Idempotency-Key so a retried request never
    creates a second customer or reports usage twice.
    """

    def __init__(self, config: BillingConfig, api_key: str = ""):
        self.config = config
        self.base_url = config.stripe_base_url.rstrip("/")
        self.api_key = api_key
        if not self.api_key:
            logger.warning("STRIPE_API_KEY is not set. Billing calls will fail.")

    def _request(self, method: str, path: str, data: Optional[Dict[str, Any]] = None,
                 params: Optional[Dict[str, Any]] = None, idempotency_key: Optional[str] = None) -> Dict[str, Any]:
        headers = {"Authorization": f"Bearer {self.api_key}"}
        if self.config.stripe_api_version:
            # Pinned so metered usage records keep working on accounts whose default version dropped them
            headers["Stripe-Version"] = self.config.stripe_api_version
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        try:
            with httpx.Client(timeout=self.config.request_timeout) as client:
                response = client.request(method, f"{self.base_url}{path}", headers=headers,
                                          data=data, params=params)
        except httpx.HTTPError as e:
            raise UpstreamError("billing", f"Stripe {method} {path} failed: {e}") from e

        if not response.is_success:
            raise UpstreamError("billing", f"Stripe {method} {path} failed: HTTP {response.status_code}",
                                {"status_code": response.status_code, "body": response.text[:500]})
        return response.json()

    def create_customer(self, account: Account, idempotency_key: str) -> str:
        data = self._request("POST", "/customers", data={
            "name": account.name,
            "metadata[account_id]": account.account_id,
        }, idempotency_key=idempotency_key)
        logger.info(f"Created billing customer {data['id']} for account {account.account_id}")
        return data["id"]

    def list_active_subscriptions(self, customer_id: str, price_id: str) -> List[Subscription]:
        data = self._request("GET", "/subscriptions", params={
            "customer": customer_id,
            "status": "active",
            "price": price_id,
            "limit": 100,
        })
        subscriptions = []
        for sub in data.get("data", []):
            items = [
                SubscriptionItem(item_id=item["id"], price_id=item["price"]["id"])
                for item in sub.get("items", {}).get("data", [])
            ]
            subscriptions.append(Subscription(subscription_id=sub["id"], created=sub.get("created", 0), items=items))
        return subscriptions

    def create_checkout_session(self, customer_id: Optional[str], account_id: str, price_id: str) -> str:
        form = {
            "mode": "subscription",
            "line_items[0][price]": price_id,
            "success_url": self.config.checkout_success_url,
            "cancel_url": self.config.checkout_cancel_url,
            "client_reference_id": account_id,
        }
        if customer_id:
            form["customer"] = customer_id
        data = self._request("POST", "/checkout/sessions", data=form)
        return data["url"]

    def report_usage(self, subscription_item_id: str, quantity: int, idempotency_key: str) -> None:
        self._request("POST", f"/subscription_items/{subscription_item_id}/usage_records", data={
            "quantity": quantity,
            "timestamp": int(time.time()),
            "action": "increment",
        }, idempotency_key=idempotency_key)
