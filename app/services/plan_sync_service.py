"""
Plan Catalog Synchronizer

Keeps every active paid plan paired with a Stripe product and a monthly
recurring price. The database owns names, copy and quotas; Stripe owns the
chargeable price. Stripe prices are immutable, so a changed amount always mints
a new price and retires the old one instead of editing it.

Synchronization is idempotent: a plan that already carries both references is
not touched unless a price resync is requested, and products/prices left over
from a partially failed run are found and adopted before anything is created.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.plan_price import PlanPrice
from app.models.subscription_plan import SubscriptionPlan
from app.schemas.billing import PlanSyncReport, PlanSyncResult
from app.services import billing_alert_service, subscription_service
from app.services.billing_exceptions import BillingError
from app.services.stripe_gateway import RECURRING_INTERVAL

logger = logging.getLogger(__name__)

SYNCED = "synced"
SKIPPED = "skipped"
ERROR = "error"
PLANNED = "planned"


def price_matches_plan(price: Dict[str, Any], plan: SubscriptionPlan) -> bool:
    """True when a Stripe price charges exactly this plan's amount, currency and monthly interval."""
    recurring = price.get("recurring") or {}
    return (
        price.get("unit_amount") == plan.price_cents
        and (price.get("currency") or "").lower() == (plan.currency or "").lower()
        and recurring.get("interval") == RECURRING_INTERVAL
        and (recurring.get("interval_count") or 1) == 1
    )


def _plan_metadata(plan: SubscriptionPlan) -> Dict[str, str]:
    return {"plan_id": plan.id, "articles_per_month": str(plan.articles_per_month)}


def _pick_product(products: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Prefer an active product; fall back to an inactive one that can be reactivated."""
    for product in products:
        if product.get("active", True):
            return product
    return products[0] if products else None


class PlanCatalogSynchronizer:
    def __init__(self, db: Session, gateway):
        self.db = db
        self.gateway = gateway

    def synchronize(
        self,
        plans: Optional[Iterable[SubscriptionPlan]] = None,
        resync_price: bool = False,
        dry_run: bool = False,
    ) -> PlanSyncReport:
        """
        Sync the given plans, or every active plan when none are given.

        A failing plan is reported and the batch carries on. ``resync_price``
        re-checks plans that already have a price ref; ``dry_run`` only reports
        what would change.
        """
        if plans is None:
            plans = subscription_service.get_plans(self.db, include_hidden=True)

        results: List[PlanSyncResult] = [
            self.sync_plan(plan, resync_price=resync_price, dry_run=dry_run) for plan in plans
        ]

        synced = sum(1 for r in results if r.status == SYNCED)
        skipped = sum(1 for r in results if r.status == SKIPPED)
        errors = sum(1 for r in results if r.status == ERROR)
        planned = sum(1 for r in results if r.status == PLANNED and r.actions)
        if dry_run:
            message = f"Dry run: {planned} plans need changes, skipped {skipped}, errors {errors}"
        else:
            message = f"Synced {synced} plans, skipped {skipped}, errors {errors}"
        logger.info(f"[PlanSync] {message}")
        return PlanSyncReport(
            message=message,
            synced=synced,
            skipped=skipped,
            errors=errors,
            planned=planned,
            dry_run=dry_run,
            results=results,
        )

    def sync_plan(
        self,
        plan: SubscriptionPlan,
        resync_price: bool = False,
        refresh_product: bool = False,
        dry_run: bool = False,
    ) -> PlanSyncResult:
        """
        Ensure one plan has an active Stripe product and a matching price.

        Args:
            plan: Plan row attached to this synchronizer's session
            resync_price: Re-check an existing price ref against the plan's
                amount/currency and replace it if it no longer matches
            refresh_product: Push the plan's name and description to an
                existing Stripe product and make sure it is active
            dry_run: Read from Stripe only and report the planned actions
        """
        if plan.is_free or not plan.is_active:
            return PlanSyncResult(plan_id=plan.id, name=plan.name, status=SKIPPED)
        if dry_run:
            return self._preview(plan, resync_price)

        actions: List[str] = []
        product_id = plan.stripe_product_id
        price_id = plan.stripe_price_id
        try:
            if not product_id:
                product_id = self._resolve_product(plan, actions)
            elif refresh_product:
                self.gateway.update_product(
                    product_id,
                    name=plan.name,
                    description=plan.description or "",
                    metadata=_plan_metadata(plan),
                    active=True,
                )
                actions.append(f"updated product {product_id}")

            retired_price_id = None
            if not price_id or resync_price:
                resolved_price_id = self._resolve_price(plan, product_id, price_id, actions)
                if price_id and resolved_price_id != price_id:
                    retired_price_id = price_id
                price_id = resolved_price_id

            self._save_refs(plan, product_id, price_id)
        except (BillingError, SQLAlchemyError) as e:
            self.db.rollback()
            self._keep_product_ref(plan, product_id)
            logger.error(f"[PlanSync] Plan {plan.id} failed: {e}")
            return PlanSyncResult(
                plan_id=plan.id,
                name=plan.name,
                status=ERROR,
                stripe_product_id=plan.stripe_product_id,
                stripe_price_id=plan.stripe_price_id,
                error=str(e),
                actions=actions,
            )

        if retired_price_id:
            self.retire_price(plan, retired_price_id)
            actions.append(f"retired price {retired_price_id}")

        return PlanSyncResult(
            plan_id=plan.id,
            name=plan.name,
            status=SYNCED,
            stripe_product_id=product_id,
            stripe_price_id=price_id,
            actions=actions,
        )

    def retire_price(self, plan: SubscriptionPlan, price_id: str) -> None:
        """
        Deactivate a replaced price. Subscriptions already on it keep billing,
        and its history row keeps resolving them to this plan.
        """
        history = self.db.get(PlanPrice, price_id)
        if history is not None and history.retired_at is None:
            history.retired_at = datetime.now(timezone.utc)
            self.db.commit()

        try:
            self.gateway.deactivate_price(price_id)
            logger.info(f"[PlanSync] Deactivated old price {price_id} of plan {plan.id}")
        except BillingError as e:
            billing_alert_service.record_alert(
                self.db,
                billing_alert_service.PROVIDER_DEACTIVATION_FAILED,
                message=f"Could not deactivate replaced price {price_id} of plan {plan.id}: {e}",
                stripe_price_id=price_id,
                plan_id=plan.id,
                commit=True,
            )

    def _preview(self, plan: SubscriptionPlan, resync_price: bool) -> PlanSyncResult:
        actions: List[str] = []
        product_id = plan.stripe_product_id
        price_id = plan.stripe_price_id
        try:
            if not product_id:
                product = _pick_product(self.gateway.search_products_by_plan(plan.id))
                if product is None:
                    actions.append(f"create product '{plan.name}'")
                else:
                    product_id = product["id"]
                    verb = "adopt" if product.get("active", True) else "reactivate"
                    actions.append(f"{verb} product {product_id}")

            if not price_id or resync_price:
                match = self._find_matching_price(plan, product_id, price_id) if product_id else None
                if match is None:
                    actions.append(f"create price {plan.price_cents} {plan.currency}/{RECURRING_INTERVAL}")
                elif match != price_id:
                    actions.append(f"adopt price {match}")
                if price_id and match != price_id:
                    actions.append(f"retire price {price_id}")
        except BillingError as e:
            return PlanSyncResult(
                plan_id=plan.id,
                name=plan.name,
                status=ERROR,
                stripe_product_id=plan.stripe_product_id,
                stripe_price_id=plan.stripe_price_id,
                error=str(e),
                actions=actions,
            )

        return PlanSyncResult(
            plan_id=plan.id,
            name=plan.name,
            status=PLANNED,
            stripe_product_id=plan.stripe_product_id,
            stripe_price_id=plan.stripe_price_id,
            actions=actions,
        )

    def _resolve_product(self, plan: SubscriptionPlan, actions: List[str]) -> str:
        product = _pick_product(self.gateway.search_products_by_plan(plan.id))
        if product is not None:
            product_id = product["id"]
            if not product.get("active", True):
                # Left inactive by an earlier soft delete of this plan
                self.gateway.update_product(product_id, active=True)
                logger.info(f"[PlanSync] Reactivated product {product_id} for plan {plan.id}")
                actions.append(f"reactivated product {product_id}")
            else:
                logger.info(f"[PlanSync] Adopted existing product {product_id} for plan {plan.id}")
                actions.append(f"adopted product {product_id}")
            return product_id

        product = self.gateway.create_product(plan.name, plan.description, _plan_metadata(plan))
        actions.append(f"created product {product['id']}")
        return product["id"]

    def _find_matching_price(
        self, plan: SubscriptionPlan, product_id: str, current_price_id: Optional[str]
    ) -> Optional[str]:
        if current_price_id:
            current = self.gateway.retrieve_price(current_price_id)
            if current.get("active") and price_matches_plan(current, plan):
                return current_price_id

        for price in self.gateway.list_active_recurring_prices(product_id):
            if price_matches_plan(price, plan):
                return price["id"]
        return None

    def _resolve_price(
        self, plan: SubscriptionPlan, product_id: str, current_price_id: Optional[str], actions: List[str]
    ) -> str:
        price_id = self._find_matching_price(plan, product_id, current_price_id)
        if price_id == current_price_id and price_id:
            return price_id
        if price_id:
            logger.info(f"[PlanSync] Adopted existing price {price_id} for plan {plan.id}")
            actions.append(f"adopted price {price_id}")
            return price_id

        price = self.gateway.create_price(
            product_id, plan.price_cents, plan.currency, metadata={"plan_id": plan.id}
        )
        actions.append(f"created price {price['id']}")
        return price["id"]

    def _save_refs(self, plan: SubscriptionPlan, product_id: str, price_id: str) -> None:
        changed = plan.stripe_product_id != product_id or plan.stripe_price_id != price_id
        if self.db.get(PlanPrice, price_id) is None:
            self.db.add(
                PlanPrice(
                    stripe_price_id=price_id,
                    plan_id=plan.id,
                    unit_amount=plan.price_cents,
                    currency=plan.currency,
                )
            )
            changed = True
        if not changed:
            return
        plan.stripe_product_id = product_id
        plan.stripe_price_id = price_id
        self.db.commit()
        self.db.refresh(plan)

    def _keep_product_ref(self, plan: SubscriptionPlan, product_id: Optional[str]) -> None:
        # A product created before the price step failed is saved so the
        # next run adopts it instead of creating a duplicate.
        if not product_id or plan.stripe_product_id == product_id:
            return
        try:
            plan.stripe_product_id = product_id
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"[PlanSync] Could not save product ref {product_id} for plan {plan.id}: {e}")
