# Overview: Single entry point routing command objects to their operation.

from __future__ import annotations

from backoffice.time_utils import Clock, utcnow
from .commands import DocumentType
from .purchase_service import cancel_purchase, create_purchase
from .sales_service import create_sale, refund_sale

HANDLERS = {
    DocumentType.SALE: create_sale,
    DocumentType.REFUND: refund_sale,
    DocumentType.PURCHASE: create_purchase,
    DocumentType.PURCHASE_CANCELLATION: cancel_purchase,
}


def execute(command, *, clock: Clock = utcnow):
    """
    Run a command and return the resulting document (Sale or Purchase).

    Routing is by command.document_type. Raises TypeError for objects that
    do not carry a known document type.
    """
    document_type = getattr(command, "document_type", None)
    handler = HANDLERS.get(document_type) if isinstance(document_type, DocumentType) else None
    if handler is None:
        raise TypeError(f"Unsupported command: {type(command).__name__}")
    return handler(command, clock=clock)
