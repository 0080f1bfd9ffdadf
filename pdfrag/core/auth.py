"""
Trust-boundary checks.

Two kinds of caller exist: end users (bearer token resolved to an Account) and
internal services (shared secret). Every service-to-service entry point goes
through `require_service_token`; nothing else compares secrets.
"""

import hmac
import logging
from typing import Optional

from pdfrag.core.exceptions import AuthorizationError, NotFoundError
from pdfrag.models.billing import Account
from pdfrag.models.chat import ChatThread
from pdfrag.storage.base import RecordStore

logger = logging.getLogger(__name__)


def require_service_token(expected: str, provided: Optional[str]) -> None:
    """Raises AuthorizationError unless `provided` matches the configured service secret."""
    if not expected:
        # An unset secret must never authorize anything
        raise AuthorizationError("Service token is not configured", status_code=401)
    if not provided or not hmac.compare_digest(expected.encode(), provided.encode()):
        logger.warning("Rejected service call with invalid token")
        raise AuthorizationError("Invalid service token", status_code=401)


def resolve_account(records: RecordStore, authorization: Optional[str]) -> Account:
    """Maps an `Authorization: Bearer <token>` header onto a stored account."""
    if not authorization or not authorization.lower().startswith("bearer "):
        raise AuthorizationError("Authentication required", status_code=401)
    token = authorization[7:].strip()
    account = records.get_account_by_token(token) if token else None
    if account is None:
        raise AuthorizationError("Unknown account", status_code=401)
    return account


def ensure_thread_owner(records: RecordStore, account_id: str, thread_id: str,
                        doc_id: Optional[str] = None) -> ChatThread:
    thread = records.get_thread(thread_id)
    if thread is None:
        raise NotFoundError(f"Thread not found: {thread_id}", {"thread_id": thread_id})
    if thread.owner_id != account_id:
        raise AuthorizationError("Thread belongs to another account", status_code=403,
                                 details={"thread_id": thread_id})
    if doc_id is not None and thread.doc_id != doc_id:
        raise AuthorizationError("Thread is bound to a different document", status_code=403,
                                 details={"thread_id": thread_id, "doc_id": doc_id})
    return thread
