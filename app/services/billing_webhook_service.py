"""
Billing Webhook Processor

Applies Stripe's asynchronous, at-least-once event stream to the local billing
profile and subscription mirror.

Every handler is idempotent and tolerates reordering:
- writes are upserts keyed by natural identity (user, Stripe subscription id),
  never read-modify-write of a previously loaded row
- each write carries the event's ``created`` timestamp and only lands when it
  is at least as new as what is stored, so a late, older event cannot undo a
  newer one
- the profile and subscription writes of one event commit together or not at all
"""
import enum
import logging
import time
from datetime import datetime, timezone
from typing import Callable, Optional, Tuple

from sqlalchemy import case, func, or_, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.billing_profile import UserBillingProfile, SubscriptionStatus
from app.models.subscription import Subscription
from app.models.user import User
from app.schemas.billing_events import (
    BillingEvent,
    CheckoutCompletedEvent,
    CheckoutSessionObject,
    InvoicePaidEvent,
    InvoicePaymentFailedEvent,
    MalformedEventError,
    SubscriptionChangedEvent,
    SubscriptionDeletedEvent,
    SubscriptionObject,
    TrialWillEndEvent,
    epoch_to_datetime,
    parse_event,
)
from app.services import billing_alert_service, subscription_service
from app.services.billing_exceptions import (
    BusinessRuleError,
    CorrelationError,
    TransientDependencyError,
)

logger = logging.getLogger(__name__)


class WebhookOutcome(str, enum.Enum):
    applied = "applied"
    ignored = "ignored"  # event type we do not act on
    dropped = "dropped"  # nothing to reconcile against; alert recorded


# Stripe subscription status -> profile status
STRIPE_STATUS_MAP = {
    "trialing": SubscriptionStatus.trial.value,
    "active": SubscriptionStatus.active.value,
    "past_due": SubscriptionStatus.past_due.value,
    "unpaid": SubscriptionStatus.past_due.value,
    "incomplete": SubscriptionStatus.past_due.value,
    "paused": SubscriptionStatus.past_due.value,
    "canceled": SubscriptionStatus.canceled.value,
    "incomplete_expired": SubscriptionStatus.canceled.value,
}

PAID_CHECKOUT_STATUSES = {"paid", "no_payment_required"}


def map_subscription_status(stripe_status: Optional[str]) -> str:
    if not stripe_status:
        return SubscriptionStatus.active.value
    return STRIPE_STATUS_MAP.get(stripe_status, SubscriptionStatus.past_due.value)


def _dialect_insert(db: Session):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    raise NotImplementedError(f"Upserts are not implemented for dialect '{dialect}'")


def _is_newer(stored, incoming):
    # Ties go to the later delivery so replays converge
    return or_(stored.is_(None), stored <= incoming)


def log_trial_ending(profile_user_id: Optional[int], subscription: SubscriptionObject) -> None:
    logger.info(
        f"[BillingWebhook] Trial ending soon: subscription={subscription.id} user={profile_user_id}"
    )


class BillingWebhookProcessor:
    """
    Stateless per delivery; construct one per request with the request's
    database session and a Stripe gateway.
    """

    def __init__(
        self,
        db: Session,
        gateway,
        on_trial_will_end: Callable[[Optional[int], SubscriptionObject], None] = log_trial_ending,
    ):
        self.db = db
        self.gateway = gateway
        self.on_trial_will_end = on_trial_will_end
        self._handlers = {
            CheckoutCompletedEvent: self._handle_checkout_completed,
            SubscriptionChangedEvent: self._handle_subscription_changed,
            SubscriptionDeletedEvent: self._handle_subscription_deleted,
            InvoicePaidEvent: self._handle_invoice_paid,
            InvoicePaymentFailedEvent: self._handle_invoice_payment_failed,
            TrialWillEndEvent: self._handle_trial_will_end,
        }

    def handle(self, payload: bytes, signature: Optional[str]) -> WebhookOutcome:
        """
        Verify, decode and apply one webhook delivery.

        Raises:
            AuthenticationError: signature check failed; nothing was touched
            TransientDependencyError: Stripe or the database failed; the
                delivery should be answered with a 5xx so Stripe retries
        """
        raw = self.gateway.verify_event(payload, signature)

        try:
            event = parse_event(raw)
        except MalformedEventError as e:
            billing_alert_service.record_alert(
                self.db,
                billing_alert_service.MALFORMED_EVENT,
                message=str(e)[:2000],
                stripe_event_id=raw.get("id"),
                stripe_event_type=raw.get("type"),
                commit=True,
            )
            return WebhookOutcome.dropped

        return self.process(event)

    def process(self, event: BillingEvent) -> WebhookOutcome:
        handler = self._handlers.get(type(event))
        if handler is None:
            logger.debug(f"[BillingWebhook] Ignoring {event.type} ({event.id})")
            return WebhookOutcome.ignored

        logger.info(f"[BillingWebhook] Processing {event.type} ({event.id})")
        try:
            outcome = handler(event)
            self.db.commit()
            return outcome
        except CorrelationError as e:
            self.db.rollback()
            billing_alert_service.record_alert(
                self.db,
                billing_alert_service.UNCORRELATED_EVENT,
                message=str(e),
                stripe_event_id=event.id,
                stripe_event_type=event.type,
                stripe_customer_id=e.stripe_customer_id,
                commit=True,
            )
            return WebhookOutcome.dropped
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"[BillingWebhook] Database error on {event.type} ({event.id}): {e}")
            raise TransientDependencyError(f"Database error while applying {event.id}") from e
        except Exception:
            self.db.rollback()
            logger.exception(f"[BillingWebhook] Failed to apply {event.type} ({event.id})")
            raise

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _handle_checkout_completed(self, event: CheckoutCompletedEvent) -> WebhookOutcome:
        session = event.obj
        if not session.subscription:
            # One-off payment mode, nothing subscription-related to mirror
            return WebhookOutcome.ignored

        subscription = self._resolve_subscription(session)
        self._apply_subscription(
            event,
            subscription,
            customer_id=session.customer or subscription.customer,
            user_id_hint=session.user_id or subscription.user_id,
        )
        return WebhookOutcome.applied

    def _handle_subscription_changed(self, event: SubscriptionChangedEvent) -> WebhookOutcome:
        subscription = event.obj
        self._apply_subscription(
            event, subscription, customer_id=subscription.customer, user_id_hint=subscription.user_id
        )
        return WebhookOutcome.applied

    def _handle_subscription_deleted(self, event: SubscriptionDeletedEvent) -> WebhookOutcome:
        subscription = event.obj
        user_id = self._correlate(subscription.customer, subscription.user_id)
        record_plan = subscription_service.resolve_plan_or_default(
            self.db, subscription.price_id, event.id, event.type, subscription.customer
        )
        free_plan = subscription_service.get_free_plan(self.db)

        self._upsert_profile(
            user_id,
            status=SubscriptionStatus.canceled.value,
            plan_id=free_plan.id,
            customer_id=subscription.customer,
            created=event.created,
        )
        canceled_at = epoch_to_datetime(subscription.canceled_at) or datetime.now(timezone.utc)
        self._upsert_subscription(
            user_id, subscription, record_plan.id, event.created, status="canceled", canceled_at=canceled_at
        )
        logger.info(f"[BillingWebhook] Subscription {subscription.id} deleted; user {user_id} moved to free")
        return WebhookOutcome.applied

    def _handle_invoice_paid(self, event: InvoicePaidEvent) -> WebhookOutcome:
        user_id = self._correlate(event.obj.customer)
        self._update_status(user_id, SubscriptionStatus.active.value, event.created)
        logger.info(f"[BillingWebhook] Payment succeeded for customer {event.obj.customer}")
        return WebhookOutcome.applied

    def _handle_invoice_payment_failed(self, event: InvoicePaymentFailedEvent) -> WebhookOutcome:
        user_id = self._correlate(event.obj.customer)
        self._update_status(user_id, SubscriptionStatus.past_due.value, event.created)
        logger.warning(f"[BillingWebhook] Payment failed for customer {event.obj.customer}")
        return WebhookOutcome.applied

    def _handle_trial_will_end(self, event: TrialWillEndEvent) -> WebhookOutcome:
        subscription = event.obj
        profile = self._find_profile(subscription.customer)
        self.on_trial_will_end(profile.user_id if profile else subscription.user_id, subscription)
        return WebhookOutcome.applied

    # ------------------------------------------------------------------
    # Checkout session fallback
    # ------------------------------------------------------------------

    def reconcile_checkout_session(self, user_id: int, session_id: str) -> Tuple[str, Optional[str]]:
        """
        Apply a finished checkout without waiting for the webhook.

        Used by the checkout success page. Returns ``(status, plan_id)``;
        status is ``pending`` while Stripe has not confirmed payment.
        """
        session = CheckoutSessionObject.model_validate(self.gateway.retrieve_checkout_session(session_id))
        if session.user_id != user_id:
            raise BusinessRuleError("Checkout session does not belong to this user")
        if session.payment_status not in PAID_CHECKOUT_STATUSES or not session.subscription:
            return "pending", None

        subscription = self._resolve_subscription(session)
        synthetic = BillingEvent(id=f"verify:{session.id}", type="checkout.session.verified", created=int(time.time()))
        try:
            status, plan_id = self._apply_subscription(
                synthetic, subscription, customer_id=session.customer or subscription.customer, user_id_hint=user_id
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise TransientDependencyError("Database error while verifying checkout session") from e
        return status, plan_id

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _resolve_subscription(self, session: CheckoutSessionObject) -> SubscriptionObject:
        if isinstance(session.subscription, SubscriptionObject):
            return session.subscription
        return SubscriptionObject.model_validate(self.gateway.retrieve_subscription(session.subscription))

    def _find_profile(self, customer_id: Optional[str]) -> Optional[UserBillingProfile]:
        if not customer_id:
            return None
        return (
            self.db.query(UserBillingProfile)
            .filter(UserBillingProfile.stripe_customer_id == customer_id)
            .first()
        )

    def _correlate(self, customer_id: Optional[str], user_id_hint: Optional[int] = None) -> int:
        """
        Find the user an event belongs to: by Stripe customer first, then by the
        ``user_id`` our checkout put in the metadata (covers the window before
        the customer id has been stored locally).
        """
        profile = self._find_profile(customer_id)
        if profile is not None:
            return profile.user_id

        if user_id_hint is not None:
            user = self.db.get(User, user_id_hint)
            if user is not None:
                return user.id

        raise CorrelationError(
            f"No billing profile for Stripe customer {customer_id!r} (user hint {user_id_hint!r})",
            stripe_customer_id=customer_id,
        )

    def _apply_subscription(
        self,
        event: BillingEvent,
        subscription: SubscriptionObject,
        customer_id: Optional[str],
        user_id_hint: Optional[int],
    ) -> Tuple[str, str]:
        user_id = self._correlate(customer_id, user_id_hint)
        plan = subscription_service.resolve_plan_or_default(
            self.db, subscription.price_id, event.id, event.type, customer_id
        )
        status = map_subscription_status(subscription.status)

        self._upsert_profile(user_id, status=status, plan_id=plan.id, customer_id=customer_id, created=event.created)
        self._upsert_subscription(user_id, subscription, plan.id, event.created)
        return status, plan.id

    def _upsert_profile(
        self, user_id: int, status: str, plan_id: str, customer_id: Optional[str], created: int
    ) -> None:
        profile = UserBillingProfile.__table__.c
        stmt = _dialect_insert(self.db)(UserBillingProfile).values(
            user_id=user_id,
            subscription_status=status,
            subscription_plan_id=plan_id,
            stripe_customer_id=customer_id,
            status_event_created=created,
            plan_event_created=created,
        )
        excluded = stmt.excluded
        status_newer = _is_newer(profile.status_event_created, excluded.status_event_created)
        plan_newer = _is_newer(profile.plan_event_created, excluded.plan_event_created)
        stmt = stmt.on_conflict_do_update(
            index_elements=[profile.user_id],
            set_={
                "subscription_status": case((status_newer, excluded.subscription_status), else_=profile.subscription_status),
                "status_event_created": case((status_newer, excluded.status_event_created), else_=profile.status_event_created),
                "subscription_plan_id": case((plan_newer, excluded.subscription_plan_id), else_=profile.subscription_plan_id),
                "plan_event_created": case((plan_newer, excluded.plan_event_created), else_=profile.plan_event_created),
                "stripe_customer_id": func.coalesce(profile.stripe_customer_id, excluded.stripe_customer_id),
                "updated_at": func.now(),
            },
        )
        self.db.execute(stmt)

    def _update_status(self, user_id: int, status: str, created: int) -> None:
        stmt = (
            update(UserBillingProfile)
            .where(
                UserBillingProfile.user_id == user_id,
                _is_newer(UserBillingProfile.status_event_created, created),
            )
            .values(subscription_status=status, status_event_created=created, updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        self.db.execute(stmt)

    def _upsert_subscription(
        self,
        user_id: int,
        subscription: SubscriptionObject,
        plan_id: str,
        created: int,
        status: Optional[str] = None,
        canceled_at: Optional[datetime] = None,
    ) -> None:
        record = Subscription.__table__.c
        stmt = _dialect_insert(self.db)(Subscription).values(
            user_id=user_id,
            stripe_subscription_id=subscription.id,
            stripe_price_id=subscription.price_id,
            plan_id=plan_id,
            status=status or subscription.status or "active",
            current_period_start=epoch_to_datetime(subscription.period_start),
            current_period_end=epoch_to_datetime(subscription.period_end),
            cancel_at=epoch_to_datetime(subscription.cancel_at),
            canceled_at=canceled_at or epoch_to_datetime(subscription.canceled_at),
            last_event_created=created,
        )
        excluded = stmt.excluded
        values = {
            "stripe_price_id": excluded.stripe_price_id,
            "plan_id": excluded.plan_id,
            "status": excluded.status,
            "current_period_start": func.coalesce(excluded.current_period_start, record.current_period_start),
            "current_period_end": func.coalesce(excluded.current_period_end, record.current_period_end),
            "cancel_at": excluded.cancel_at,
            "canceled_at": excluded.canceled_at,
            "last_event_created": excluded.last_event_created,
            "updated_at": func.now(),
        }
        if canceled_at is not None:
            # Deletion keeps the first recorded cancellation time
            values["canceled_at"] = func.coalesce(record.canceled_at, excluded.canceled_at)

        stmt = stmt.on_conflict_do_update(
            index_elements=[record.user_id, record.stripe_subscription_id],
            set_=values,
            where=_is_newer(record.last_event_created, excluded.last_event_created),
        )
        self.db.execute(stmt)
