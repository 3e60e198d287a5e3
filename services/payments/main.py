"""Payments Service - FastAPI application for donations via Stripe."""

import logging
import sys
import os
from contextlib import asynccontextmanager
from typing import Dict, Literal

from fastapi import FastAPI, Request, status, HTTPException, Header
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException
import stripe

from shared.config import get_stripe_config
from shared.models import utc_now_iso

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)]
)

logger = logging.getLogger(__name__)

STRIPE_CONFIG = get_stripe_config()

CHURCH_NAME = os.getenv("CHURCH_NAME", "Apostolic Church International")


def _require_stripe() -> None:
    """Set the Stripe API key or fail with 503 when payments aren't configured."""
    if not STRIPE_CONFIG.get("secret_key"):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Payments are not configured"
        )
    stripe.api_key = STRIPE_CONFIG["secret_key"]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    logger.info("Payments Service starting up...")
    if STRIPE_CONFIG.get("secret_key"):
        stripe.api_key = STRIPE_CONFIG["secret_key"]
        logger.info("Stripe initialized")
    else:
        logger.warning("STRIPE_SECRET_KEY is not set; payment endpoints will return 503")
    yield
    logger.info("Payments Service shutting down...")


# Create FastAPI application
app = FastAPI(
    title="Payments Service",
    description="Donation payments for the church website",
    version="0.1.0",
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("ALLOWED_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error handling middleware
@app.middleware("http")
async def error_handling_middleware(request: Request, call_next):
    """Global error handling middleware."""
    try:
        response = await call_next(request)
        return response
    except Exception as exc:
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"success": False, "message": "Internal server error"}
        )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": str(exc.detail)}
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Report body validation failures as 400 with field-level messages."""
    errors = [
        {
            "field": ".".join(str(part) for part in error["loc"] if part != "body"),
            "message": error["msg"],
        }
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"success": False, "message": "Validation failed", "errors": errors}
    )


# Health check endpoint
@app.get("/health", status_code=status.HTTP_200_OK)
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy" if STRIPE_CONFIG.get("secret_key") else "degraded",
        "service": "payments",
        "version": "0.1.0"
    }


@app.get("/api/config", status_code=status.HTTP_200_OK)
async def client_config():
    """Client-safe configuration (publishable key only)."""
    return {
        "success": True,
        "data": {"stripePublishableKey": STRIPE_CONFIG.get("publishable_key", "")}
    }


# Request models
class PaymentIntentRequest(BaseModel):
    """Request model for creating a donation payment intent."""
    amount: float = Field(..., ge=1, description="Donation amount in dollars (minimum $1)")
    currency: Literal["usd"] = "usd"
    metadata: Dict[str, str] = Field(default_factory=dict)


class ConfirmPaymentRequest(BaseModel):
    """Request model for confirming a payment."""
    payment_intent_id: str = Field(..., min_length=1)


@app.post("/api/payments/create-payment-intent", status_code=status.HTTP_200_OK)
async def create_payment_intent(request: PaymentIntentRequest):
    """
    Create a Stripe PaymentIntent for a donation.

    Returns the client secret the donation form needs to confirm the payment.
    """
    _require_stripe()

    amount_in_cents = int(round(request.amount * 100))
    fund = request.metadata.get("fund", "General Fund")
    frequency = request.metadata.get("frequency", "one-time")

    try:
        payment_intent = stripe.PaymentIntent.create(
            amount=amount_in_cents,
            currency=request.currency,
            metadata={
                "church_name": CHURCH_NAME,
                "fund": fund,
                "frequency": frequency,
                "donor_email": request.metadata.get("donor_email", ""),
                "donor_name": request.metadata.get("donor_name", ""),
                "donation_source": "website",
                "created_at": utc_now_iso(),
            },
            automatic_payment_methods={"enabled": True},
            description=f"Donation to {fund} - {frequency}",
        )
    except stripe.StripeError as e:
        logger.error(f"Error creating payment intent: {e}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "success": False,
                "message": getattr(e, "user_message", None) or str(e),
                "error_type": type(e).__name__,
            }
        )

    logger.info(f"Payment intent created: {payment_intent.id} for ${request.amount}")

    return {
        "success": True,
        "message": "Payment intent created successfully",
        "data": {
            "client_secret": payment_intent.client_secret,
            "payment_intent_id": payment_intent.id,
            "amount": request.amount,
            "currency": request.currency,
            "status": payment_intent.status,
        }
    }


@app.post("/api/payments/confirm-payment", status_code=status.HTTP_200_OK)
async def confirm_payment(request: ConfirmPaymentRequest):
    """Look up a payment intent and report its status."""
    _require_stripe()

    try:
        payment_intent = stripe.PaymentIntent.retrieve(request.payment_intent_id)
    except stripe.StripeError as e:
        logger.warning(f"Failed to retrieve payment intent {request.payment_intent_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Payment intent not found"
        )

    return {
        "success": True,
        "message": "Payment status retrieved",
        "data": {
            "payment_intent_id": payment_intent.id,
            "status": payment_intent.status,
            "amount": payment_intent.amount / 100,
            "currency": payment_intent.currency,
            "succeeded": payment_intent.status == "succeeded",
        }
    }


@app.post("/api/webhooks/stripe", status_code=status.HTTP_200_OK)
async def stripe_webhook(request: Request, stripe_signature: str = Header(None)):
    """
    Receive Stripe webhook events.

    The raw body is verified against STRIPE_WEBHOOK_SECRET before any event
    is processed.
    """
    webhook_secret = STRIPE_CONFIG.get("webhook_secret")
    if not webhook_secret:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Webhooks are not configured"
        )

    payload = await request.body()

    try:
        event = stripe.Webhook.construct_event(payload, stripe_signature, webhook_secret)
    except (ValueError, stripe.SignatureVerificationError) as e:
        logger.warning(f"Webhook signature verification failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Webhook Error: {e}"
        )

    event_type = event["type"]
    payment_intent = event["data"]["object"]
    logger.info(f"Received webhook event: {event_type}")

    if event_type == "payment_intent.succeeded":
        logger.info(
            f"PaymentIntent {payment_intent['id']} succeeded: "
            f"{payment_intent['amount'] / 100} {payment_intent['currency']}"
        )
    elif event_type == "payment_intent.payment_failed":
        logger.warning(f"PaymentIntent {payment_intent['id']} failed")
    else:
        logger.info(f"Unhandled event type {event_type}")

    return {"received": True}


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PAYMENTS_PORT", 3002))
    uvicorn.run(app, host="0.0.0.0", port=port)
