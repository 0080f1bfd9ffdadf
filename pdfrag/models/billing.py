from pydantic import BaseModel

class Account(BaseModel):
    account_id: str
    name: str
    token_identifier: str            # bearer token issued by the auth provider

class BillingState(BaseModel):
    account_id: str
    customer_id: str | None = None   # set at most once
    has_subscription: bool = False
    subscription_item_id: str | None = None

class SubscriptionItem(BaseModel):
    item_id: str
    price_id: str

class Subscription(BaseModel):
    subscription_id: str
    created: int                     # epoch seconds as returned by the provider
    items: list[SubscriptionItem]

class GateDecision(BaseModel):
    allowed: bool
    usage: int
    ceiling: int
    customer_id: str | None = None
    subscription_item_id: str | None = None
    checkout_url: str | None = None

class UsageSummary(BaseModel):
    account_id: str
    period_key: str
    units: int
    ceiling: int
    has_subscription: bool
