"""
Requester Identity for Delivery Hub
===================================

The service sits behind an authentication gateway. The gateway validates the
caller's credentials and forwards the result as two headers:

- X-User-Id: the authenticated user's id (opaque string)
- X-User-Role: one of customer, restaurant, delivery_agent

This module turns those headers into a Requester for route handlers, and
guards the payment gateway's callback with a shared secret.

Usage:
------
    from delivery_hub.auth import Requester, require_role

    @router.post("/orders")
    def create_order(
        requester: Requester = Depends(require_role(ActorRole.CUSTOMER)),
        db: Session = Depends(get_db),
    ):
        ...

Errors:
-------
- Missing X-User-Id or an unknown X-User-Role: 401
- A known role that the endpoint does not serve: 403
- Payment callback without the configured secret: 401 (503 if no secret is
  configured, so a misconfigured deployment fails closed)
"""

import secrets
from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import Depends, Header, HTTPException, status

from . import config
from .state_machine import ActorRole


@dataclass(frozen=True)
class Requester:
    user_id: str
    role: ActorRole


def get_requester(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
) -> Requester:
    """Build the Requester from gateway headers, or answer 401."""
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header",
        )
    try:
        role = ActorRole((x_user_role or "").strip().lower())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or unknown X-User-Role header",
        )
    return Requester(user_id=x_user_id.strip(), role=role)


def require_role(*roles: ActorRole) -> Callable[..., Requester]:
    """Dependency factory: the requester must hold one of ``roles``."""

    def dependency(requester: Requester = Depends(get_requester)) -> Requester:
        if requester.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Role %s cannot access this resource" % requester.role.value,
            )
        return requester

    return dependency


def verify_payment_secret(x_payment_secret: Optional[str] = Header(None)) -> None:
    """Accept the payment gateway's callback only with the shared secret."""
    if not config.PAYMENT_WEBHOOK_SECRET:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Payment callback not configured. Set PAYMENT_WEBHOOK_SECRET environment variable.",
        )

    # Constant-time comparison
    if not x_payment_secret or not secrets.compare_digest(
        x_payment_secret.encode("utf-8"),
        config.PAYMENT_WEBHOOK_SECRET.encode("utf-8"),
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid payment callback secret",
        )
