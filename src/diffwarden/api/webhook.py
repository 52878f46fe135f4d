"""
Webhook handler for GitHub pull request events.

Provides a FastAPI router that turns pull request deliveries into review
tickets and merged pull requests into index update tickets. Tickets are
queued on the application's ReviewQueue and the request returns at once.
"""

import asyncio
import hashlib
import hmac

import structlog
from fastapi import APIRouter, Header, HTTPException, Request
from pydantic import BaseModel, ValidationError

from diffwarden.review.models import ReviewTicket, TicketAction

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

REVIEW_ACTIONS = {"opened", "reopened", "synchronize"}


class BranchRef(BaseModel):
    """Head or base of a pull request."""

    ref: str
    sha: str


class PullRequest(BaseModel):
    number: int
    base: BranchRef
    head: BranchRef
    merged: bool = False
    merge_commit_sha: str | None = None


class Repository(BaseModel):
    full_name: str


class PullRequestPayload(BaseModel):
    """GitHub pull_request payload (subset of fields)."""

    action: str
    number: int
    pull_request: PullRequest
    repository: Repository


def verify_signature(payload: bytes, signature: str, secret: str) -> bool:
    """
    Verify GitHub webhook signature.

    Args:
        payload: Raw request body
        signature: X-Hub-Signature-256 header value
        secret: Webhook secret

    Returns:
        True if signature is valid
    """
    if not signature.startswith("sha256="):
        return False

    expected = hmac.new(
        secret.encode(),
        payload,
        hashlib.sha256,
    ).hexdigest()

    return hmac.compare_digest(f"sha256={expected}", signature)


def ticket_for(payload: PullRequestPayload) -> ReviewTicket | None:
    """Ticket for a pull request event, or None when the event is not handled."""
    pr = payload.pull_request
    repository = payload.repository.full_name

    if payload.action in REVIEW_ACTIONS:
        return ReviewTicket(
            repository=repository,
            before_ref=pr.base.sha,
            after_ref=pr.head.sha,
            pull_request_id=pr.number,
            base_branch=pr.base.ref,
        )

    if payload.action == "closed" and pr.merged and pr.merge_commit_sha:
        return ReviewTicket(
            repository=repository,
            before_ref=pr.base.sha,
            after_ref=pr.merge_commit_sha,
            pull_request_id=pr.number,
            base_branch=pr.base.ref,
            action=TicketAction.REINDEX,
        )

    return None


@router.post("/github")
async def handle_github_webhook(
    request: Request,
    x_hub_signature_256: str | None = Header(None),
    x_github_event: str | None = Header(None),
):
    """
    Handle GitHub pull request events.

    Args:
        request: FastAPI request
        x_hub_signature_256: GitHub signature header
        x_github_event: GitHub event type header
    """
    queue = getattr(request.app.state, "queue", None)
    if queue is None:
        raise HTTPException(status_code=503, detail="Review queue not initialized")

    # Read raw body for signature verification
    body = await request.body()

    secret = request.app.state.config.webhook_secret
    if secret:
        if not x_hub_signature_256:
            raise HTTPException(status_code=401, detail="Missing signature")

        if not verify_signature(body, x_hub_signature_256, secret):
            raise HTTPException(status_code=401, detail="Invalid signature")

    if x_github_event == "ping":
        return {"status": "pong"}

    if x_github_event != "pull_request":
        logger.info("Ignoring non-pull-request event", github_event=x_github_event)
        return {"status": "ignored", "reason": f"Event type '{x_github_event}' not handled"}

    try:
        payload = PullRequestPayload.model_validate_json(body)
    except ValidationError as e:
        logger.error("Failed to parse webhook payload", error=str(e))
        raise HTTPException(status_code=400, detail="Invalid payload")

    ticket = ticket_for(payload)
    if ticket is None:
        logger.info("Ignoring pull request action", action=payload.action, number=payload.number)
        return {"status": "ignored", "reason": f"Action '{payload.action}' not handled"}

    logger.info(
        "Received pull request webhook",
        repo=ticket.repository,
        number=ticket.pull_request_id,
        action=payload.action,
        head=ticket.after_ref[:8],
    )

    try:
        queued = queue.submit(ticket)
    except asyncio.QueueFull:
        raise HTTPException(status_code=503, detail="Review queue is full")

    return {
        "status": "queued" if queued else "duplicate",
        "action": ticket.action.value,
        "repository": ticket.repository,
        "pull_request": ticket.pull_request_id,
    }


@router.get("/status")
async def webhook_status(request: Request):
    """Get webhook handler status."""
    queue = getattr(request.app.state, "queue", None)
    if queue is None:
        return {"status": "not_initialized"}

    return {
        "status": "ready",
        "signature_required": bool(request.app.state.config.webhook_secret),
        "queue": queue.get_stats(),
    }
