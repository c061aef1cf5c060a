"""
Stripe webhook payload models.

Only the fields the billing core reads are modelled; everything else in the
payload is ignored. Event types we do not handle parse into ``UnhandledEvent``
so they can be acknowledged without touching any state.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


def _expandable_id(value: Any) -> Any:
    # Stripe sends either an id string or the expanded object
    if isinstance(value, dict):
        return value.get("id")
    return value


def epoch_to_datetime(value: Optional[int]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


class StripePayload(BaseModel):
    model_config = ConfigDict(extra="ignore")


class PriceRef(StripePayload):
    id: Optional[str] = None


class SubscriptionItem(StripePayload):
    price: Optional[PriceRef] = None
    current_period_start: Optional[int] = None
    current_period_end: Optional[int] = None


class SubscriptionItemList(StripePayload):
    data: List[SubscriptionItem] = Field(default_factory=list)


class SubscriptionObject(StripePayload):
    id: str
    customer: Optional[str] = None
    status: Optional[str] = None
    items: SubscriptionItemList = Field(default_factory=SubscriptionItemList)
    plan: Optional[PriceRef] = None  # legacy single-plan shape
    current_period_start: Optional[int] = None
    current_period_end: Optional[int] = None
    cancel_at: Optional[int] = None
    canceled_at: Optional[int] = None
    metadata: Dict[str, str] = Field(default_factory=dict)

    @field_validator("customer", mode="before")
    @classmethod
    def customer_id_from_object(cls, value):
        return _expandable_id(value)

    @field_validator("metadata", mode="before")
    @classmethod
    def metadata_or_empty(cls, value):
        return value or {}

    @property
    def first_item(self) -> Optional[SubscriptionItem]:
        return self.items.data[0] if self.items.data else None

    @property
    def price_id(self) -> Optional[str]:
        item = self.first_item
        if item and item.price and item.price.id:
            return item.price.id
        if self.plan and self.plan.id:
            return self.plan.id
        return None

    @property
    def period_start(self) -> Optional[int]:
        # Newer API versions only carry the period on subscription items
        if self.current_period_start is not None:
            return self.current_period_start
        item = self.first_item
        return item.current_period_start if item else None

    @property
    def period_end(self) -> Optional[int]:
        if self.current_period_end is not None:
            return self.current_period_end
        item = self.first_item
        return item.current_period_end if item else None

    @property
    def user_id(self) -> Optional[int]:
        return _metadata_user_id(self.metadata)


class CheckoutSessionObject(StripePayload):
    id: str
    customer: Optional[str] = None
    subscription: Optional[Union[SubscriptionObject, str]] = None
    payment_status: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)

    @field_validator("customer", mode="before")
    @classmethod
    def customer_id_from_object(cls, value):
        return _expandable_id(value)

    @field_validator("metadata", mode="before")
    @classmethod
    def metadata_or_empty(cls, value):
        return value or {}

    @property
    def user_id(self) -> Optional[int]:
        return _metadata_user_id(self.metadata)


class InvoiceObject(StripePayload):
    id: Optional[str] = None
    customer: Optional[str] = None
    subscription: Optional[str] = None

    @field_validator("customer", "subscription", mode="before")
    @classmethod
    def ids_from_objects(cls, value):
        return _expandable_id(value)


def _metadata_user_id(metadata: Dict[str, str]) -> Optional[int]:
    raw = metadata.get("user_id")
    if raw is None:
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


class BillingEvent(StripePayload):
    id: str
    type: str
    created: int


class CheckoutCompletedEvent(BillingEvent):
    obj: CheckoutSessionObject = Field(alias="object")


class SubscriptionChangedEvent(BillingEvent):
    """customer.subscription.created / customer.subscription.updated"""
    obj: SubscriptionObject = Field(alias="object")


class SubscriptionDeletedEvent(BillingEvent):
    obj: SubscriptionObject = Field(alias="object")


class InvoicePaidEvent(BillingEvent):
    obj: InvoiceObject = Field(alias="object")


class InvoicePaymentFailedEvent(BillingEvent):
    obj: InvoiceObject = Field(alias="object")


class TrialWillEndEvent(BillingEvent):
    obj: SubscriptionObject = Field(alias="object")


class UnhandledEvent(BillingEvent):
    pass


EVENT_TYPES = {
    "checkout.session.completed": CheckoutCompletedEvent,
    "customer.subscription.created": SubscriptionChangedEvent,
    "customer.subscription.updated": SubscriptionChangedEvent,
    "customer.subscription.deleted": SubscriptionDeletedEvent,
    "invoice.paid": InvoicePaidEvent,
    "invoice.payment_succeeded": InvoicePaidEvent,
    "invoice.payment_failed": InvoicePaymentFailedEvent,
    "customer.subscription.trial_will_end": TrialWillEndEvent,
}


class MalformedEventError(ValueError):
    pass


def parse_event(raw: Dict[str, Any]) -> BillingEvent:
    """
    Turn a decoded webhook body into one of the known event models.

    Raises:
        MalformedEventError: a known event type whose payload lacks the
            fields we need, or an envelope without id/type/created
    """
    event_type = raw.get("type")
    model = EVENT_TYPES.get(event_type, UnhandledEvent)
    data = raw.get("data") if isinstance(raw.get("data"), dict) else {}
    try:
        if model is UnhandledEvent:
            return UnhandledEvent.model_validate(raw)
        return model.model_validate({**raw, "object": data.get("object")})
    except ValidationError as e:
        raise MalformedEventError(f"Malformed {event_type} event: {e}") from e
