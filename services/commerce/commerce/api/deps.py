from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from commerce.application.schemas import Actor
from commerce.auth_local import decode_access_token
from commerce.domain.models import Customer
from commerce.infrastructure.db import get_db
from shared.core import set_request_context

BEARER_PREFIX = "Bearer "


def get_current_customer(request: Request, db: Session = Depends(get_db)) -> Customer:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith(BEARER_PREFIX):
        raise HTTPException(status_code=401, detail="Missing token")
    token_data = decode_access_token(auth_header.split(" ", 1)[1])
    if not token_data:
        raise HTTPException(status_code=401, detail="Invalid token")
    try:
        customer_id = int(token_data.get("sub"))
    except (TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid token") from None
    customer = db.get(Customer, customer_id)
    if customer is None:
        raise HTTPException(status_code=401, detail="Unknown customer")
    set_request_context(actor_id=str(customer.id))
    return customer


def require_admin(customer: Customer = Depends(get_current_customer)) -> Customer:
    if customer.role != "admin":
        raise HTTPException(status_code=403, detail="Admin access required")
    return customer


def actor_for(customer: Customer) -> Actor:
    return Actor(user_id=customer.id, name=customer.display_name)
