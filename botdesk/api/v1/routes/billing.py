from functools import lru_cache

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from botdesk.core.config import BillingConfig, settings
from botdesk.core.database import get_db
from botdesk.core.middleware import get_current_account, require_admin
from botdesk.services.billing_service import BillingService
from botdesk.services.quota_service import QuotaService
from botdesk.services.webhook_reconciler import WebhookReconciler
import logging

logger = logging.getLogger(__name__)

router = APIRouter()


class CheckoutSessionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)  # Allows both price_id and priceId

    price_id: str = Field(..., alias="priceId", min_length=1)


@lru_cache()
def get_billing_config() -> BillingConfig:
    return BillingConfig.from_settings(settings)


def get_reconciler(config: BillingConfig = Depends(get_billing_config)) -> WebhookReconciler:
    return WebhookReconciler(config)


def get_billing_service(config: BillingConfig = Depends(get_billing_config)) -> BillingService:
    return BillingService(config)


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    reconciler: WebhookReconciler = Depends(get_reconciler),
    db: Session = Depends(get_db),
):
    """
    Stripe webhook endpoint.

    Signature is verified over the raw body; invalid signatures get 400.
    Every verified event is acknowledged with 200, including unknown types
    and customers that map to no user, so Stripe does not retry them.
    """
    payload = await request.body()
    signature = request.headers.get("stripe-signature")

    result = await run_in_threadpool(reconciler.handle, db, payload, signature)
    logger.info(f"stripe_webhook: Success - outcome: {result.outcome}")
    return {"received": True}


@router.post("/checkout-session", status_code=status.HTTP_201_CREATED)
def create_checkout_session(
    body: CheckoutSessionRequest,
    current_user: dict = Depends(get_current_account),
    service: BillingService = Depends(get_billing_service),
    db: Session = Depends(get_db),
):
    """Start a Stripe Checkout for a subscription plan"""
    logger.info(f"create_checkout_session: Entry - user: {current_user['uid']}")
    url = service.start_checkout(db, current_user['uid'], body.price_id)
    return {"url": url}


@router.post("/portal-session", status_code=status.HTTP_201_CREATED)
def create_portal_session(
    current_user: dict = Depends(get_current_account),
    service: BillingService = Depends(get_billing_service),
    db: Session = Depends(get_db),
):
    """Open the Stripe customer portal for the current user"""
    logger.info(f"create_portal_session: Entry - user: {current_user['uid']}")
    url = service.start_portal_session(db, current_user['uid'])
    return {"url": url}


@router.get("/plans")
def get_plans(service: BillingService = Depends(get_billing_service)):
    """Public list of purchasable plans"""
    return {"plans": service.get_plans()}


@router.get("/current")
def get_current_subscription(
    current_user: dict = Depends(get_current_account),
    service: BillingService = Depends(get_billing_service),
    db: Session = Depends(get_db),
):
    """Current user's subscription status and plan"""
    return service.get_current_entitlement(db, current_user['uid'])


@router.get("/quota-status")
def get_quota_status(
    current_user: dict = Depends(get_current_account),
    db: Session = Depends(get_db),
):
    """Current bot usage against the plan limit"""
    return QuotaService().get_quota_status(db, current_user['uid'])


@router.get("/analytics")
def get_subscription_analytics(
    admin_user: dict = Depends(require_admin),
    service: BillingService = Depends(get_billing_service),
    db: Session = Depends(get_db),
):
    logger.info(f"get_subscription_analytics: Entry - admin: {admin_user['uid']}")
    return service.get_subscription_analytics(db)


@router.get("/recent")
def get_recent_subscriptions(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    admin_user: dict = Depends(require_admin),
    service: BillingService = Depends(get_billing_service),
    db: Session = Depends(get_db),
):
    logger.info(f"get_recent_subscriptions: Entry - admin: {admin_user['uid']}, page: {page}")
    return service.get_recent_subscriptions(db, page=page, limit=limit)
