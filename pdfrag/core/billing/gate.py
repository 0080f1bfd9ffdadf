import logging
import threading
from typing import Dict, Optional
from pdfrag.config.settings import BillingConfig
from pdfrag.core.billing.provider import BillingProvider
from pdfrag.core.billing.usage_meter import UsageMeter
from pdfrag.core.exceptions import NotFoundError
from pdfrag.models.billing import GateDecision
from pdfrag.storage.base import RecordStore

logger = logging.getLogger(__name__)

class BillingGate:
    """
    Pre-flight authorization for metered chat turns.

    1. Provisions the billing customer once per account (before any decision).
    2. Looks for an active subscription on the metered price.
    3. Blocks free-tier accounts at the usage ceiling with a checkout link.
    """

    def __init__(self, records: RecordStore, provider: BillingProvider, meter: UsageMeter, config: BillingConfig):
        self.records = records
        self.provider = provider
        self.usage_meter = meter
        self.config = config
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _account_lock(self, account_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(account_id, threading.Lock())

    def ensure_customer(self, account_id: str) -> str:
        state = self.records.get_billing_state(account_id)
        if state.customer_id:
            return state.customer_id

        with self._account_lock(account_id):
            # Re-check: a concurrent first request may have won the race
            state = self.records.get_billing_state(account_id)
            if state.customer_id:
                return state.customer_id

            account = self.records.get_account(account_id)
            if account is None:
                raise NotFoundError(f"Account not found: {account_id}", {"account_id": account_id})

            customer_id = self.provider.create_customer(account, idempotency_key=f"customer-create-{account_id}")
            # Store-level conditional create keeps the first reference across processes too
            stored = self.records.set_billing_customer_if_absent(account_id, customer_id)
            if stored != customer_id:
                logger.warning(f"Account {account_id} already had customer {stored}; discarded {customer_id}")
            return stored

    def find_subscription_item(self, customer_id: str) -> Optional[str]:
        """
        Item id of the metered price on the account's active subscriptions.
        With several matches the most recently created subscription wins,
        ties broken by subscription id then item id.
        """
        price_id = self.config.metered_price_id
        if not price_id:
            return None

        matches = [
            (sub.created, sub.subscription_id, item.item_id)
            for sub in self.provider.list_active_subscriptions(customer_id, price_id)
            for item in sub.items
            if item.price_id == price_id
        ]
        if not matches:
            return None
        return max(matches)[2]

    def authorize(self, account_id: str, period: Optional[str] = None) -> GateDecision:
        period = period or self.usage_meter.current_period()
        customer_id = self.ensure_customer(account_id)

        item_id = self.find_subscription_item(customer_id)
        self.records.set_subscription(account_id, item_id)

        usage = self.usage_meter.get(account_id, period)
        ceiling = self.config.free_tier_units

        if item_id is not None:
            return GateDecision(allowed=True, usage=usage, ceiling=ceiling,
                                customer_id=customer_id, subscription_item_id=item_id)

        if usage >= ceiling:
            logger.info(f"Account {account_id} blocked at {usage}/{ceiling} units, starting checkout")
            checkout_url = self.provider.create_checkout_session(customer_id, account_id, self.config.metered_price_id)
            return GateDecision(allowed=False, usage=usage, ceiling=ceiling,
                                customer_id=customer_id, checkout_url=checkout_url)

        return GateDecision(allowed=True, usage=usage, ceiling=ceiling, customer_id=customer_id)

    def report_usage(self, decision: GateDecision, units: int, idempotency_key: str) -> bool:
        """Reports one usage event for a subscribed account. Returns True when an event was sent."""
        if not decision.subscription_item_id or units <= 0:
            return False
        self.provider.report_usage(decision.subscription_item_id, units, idempotency_key=idempotency_key)
        return True
