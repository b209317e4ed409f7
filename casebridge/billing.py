"""
Billing: intake plans, invoices and payment confirmation.

Amounts are whole currency units (NGN). Payment confirmation is idempotent
on the payment reference; provider-side verification happens upstream.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from .auth import AuthContext
from .config import get_settings
from .db.models import (
    CaseReport, Invoice, InvoiceStatus, Matter, Payment, PaymentStatus, PlanType,
)
from .errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationFailedError
from .activity import log_audit
from .notifications import notify
from .realtime import queue_row_change
from .rbac import Action, Resource

logger = logging.getLogger(__name__)

PLANS: Dict[PlanType, Dict[str, Any]] = {
    PlanType.BASIC: {"name": "Basic", "amount": 7000, "sla_hours": 72},
    PlanType.STANDARD: {"name": "Standard", "amount": 15000, "sla_hours": 24},
    PlanType.PREMIUM: {"name": "Premium", "amount": 30000, "sla_hours": 6},
}

_OPEN_STATUSES = (InvoiceStatus.DRAFT, InvoiceStatus.PENDING)


def list_plans() -> List[Dict[str, Any]]:
    currency = get_settings().currency
    return [
        {"plan_type": plan.value, "currency": currency, **details}
        for plan, details in PLANS.items()
    ]


def sla_due_at(plan: Optional[PlanType], start: Optional[datetime] = None) -> Optional[datetime]:
    if plan is None:
        return None
    return (start or datetime.utcnow()) + timedelta(hours=PLANS[plan]["sla_hours"])


def intake_payment_required() -> bool:
    return get_settings().require_intake_payment


def _is_billing_manager(auth: AuthContext) -> bool:
    return auth.is_staff and auth.has_permission(Resource.BILLING, Action.MANAGE)


def _require_billing_manager(auth: AuthContext) -> None:
    if not _is_billing_manager(auth):
        raise PermissionDeniedError("Insufficient permissions")


def get_invoice(db: Session, auth: AuthContext, invoice_id: str) -> Invoice:
    """Invoice visible to the caller: its client, or a billing manager of its firm."""
    invoice = db.query(Invoice).filter(Invoice.id == invoice_id).first()
    if not invoice:
        raise NotFoundError("Invoice", invoice_id)
    if auth.is_client and invoice.client_id == auth.user_id:
        return invoice
    if _is_billing_manager(auth) and invoice.firm_id == auth.firm_id:
        return invoice
    raise NotFoundError("Invoice", invoice_id)


# =============================================================================
# INTAKE INVOICES
# =============================================================================

def create_intake_invoice(db: Session, auth: AuthContext, plan: PlanType) -> Invoice:
    if not auth.is_client:
        raise PermissionDeniedError("Only clients can buy intake plans")
    details = PLANS[plan]
    invoice = Invoice(
        client_id=auth.user_id,
        plan_type=plan,
        description=f"{details['name']} case intake",
        amount=details["amount"],
        currency=get_settings().currency,
        status=InvoiceStatus.DRAFT,
        created_by_id=auth.user_id,
    )
    db.add(invoice)
    db.commit()
    return invoice


def consume_intake_invoice(db: Session, client_id: str, invoice_id: str, report: CaseReport) -> Invoice:
    """Bind a paid, unused intake invoice to a case report (caller commits)."""
    invoice = db.query(Invoice).filter(Invoice.id == invoice_id, Invoice.client_id == client_id).first()
    if not invoice:
        raise NotFoundError("Invoice", invoice_id)
    if invoice.plan_type is None:
        raise ValidationFailedError("Invoice is not an intake invoice")
    if invoice.status != InvoiceStatus.PAID:
        raise ValidationFailedError("Invoice has not been paid")
    if invoice.consumed_by_report_id:
        raise ConflictError("Invoice has already been used for a case report")

    invoice.consumed_by_report_id = report.id
    return invoice


# =============================================================================
# FIRM INVOICES
# =============================================================================

def create_invoice(
    db: Session,
    auth: AuthContext,
    matter_id: str,
    amount: int,
    description: Optional[str] = None,
) -> Invoice:
    _require_billing_manager(auth)
    if amount <= 0:
        raise ValidationFailedError("Amount must be positive")

    matter = db.query(Matter).filter(Matter.id == matter_id, Matter.firm_id == auth.firm_id).first()
    if not matter:
        raise NotFoundError("Matter", matter_id)
    if not matter.client_id:
        raise ConflictError("Matter has no client to bill")

    invoice = Invoice(
        client_id=matter.client_id,
        firm_id=auth.firm_id,
        matter_id=matter.id,
        description=description,
        amount=amount,
        currency=get_settings().currency,
        status=InvoiceStatus.DRAFT,
        created_by_id=auth.user_id,
    )
    db.add(invoice)
    db.flush()
    log_audit(db, auth.firm_id, auth.user_id, "invoice_created", "invoice", invoice.id,
              {"amount": amount, "matter_id": matter.id})
    db.commit()
    return invoice


def issue_invoice(db: Session, auth: AuthContext, invoice_id: str) -> Invoice:
    _require_billing_manager(auth)
    invoice = get_invoice(db, auth, invoice_id)
    if invoice.status != InvoiceStatus.DRAFT:
        raise ConflictError(f"Only draft invoices can be issued (invoice is {invoice.status.value})")

    invoice.status = InvoiceStatus.PENDING
    notify(
        db, invoice.client_id, "invoice_issued", "New invoice",
        f"An invoice of {invoice.currency} {invoice.amount:,} is awaiting payment",
        link=f"/client/billing/{invoice.id}",
        matter_id=invoice.matter_id,
        firm_id=invoice.firm_id,
        metadata={"invoice_id": invoice.id, "amount": invoice.amount},
    )
    log_audit(db, auth.firm_id, auth.user_id, "invoice_issued", "invoice", invoice.id)
    queue_row_change(db, f"user:{invoice.client_id}", invoice, "UPDATE")
    db.commit()
    return invoice


def cancel_invoice(db: Session, auth: AuthContext, invoice_id: str) -> Invoice:
    invoice = get_invoice(db, auth, invoice_id)
    if invoice.status not in _OPEN_STATUSES:
        raise ConflictError(f"Invoice is {invoice.status.value}")

    invoice.status = InvoiceStatus.CANCELLED
    if invoice.firm_id:
        log_audit(db, invoice.firm_id, auth.user_id, "invoice_cancelled", "invoice", invoice.id)
    queue_row_change(db, f"user:{invoice.client_id}", invoice, "UPDATE")
    db.commit()
    return invoice


def confirm_invoice_payment(
    db: Session,
    auth: AuthContext,
    invoice_id: str,
    reference: str,
    status: PaymentStatus = PaymentStatus.SUCCESS,
) -> Dict[str, Any]:
    """
    Record the outcome of a payment attempt.

    A reference seen before returns the stored outcome unchanged.
    Returns {"invoice", "payment", "duplicate"}.
    """
    if not reference:
        raise ValidationFailedError("Payment reference is required")
    invoice = get_invoice(db, auth, invoice_id)

    existing = db.query(Payment).filter(Payment.reference == reference).first()
    if existing:
        if existing.invoice_id != invoice.id:
            raise ConflictError("Payment reference belongs to another invoice")
        logger.info(f"Duplicate payment confirmation {reference} for invoice {invoice.id}")
        return {"invoice": invoice, "payment": existing, "duplicate": True}

    if invoice.status not in _OPEN_STATUSES:
        raise ConflictError(f"Invoice is {invoice.status.value}")

    payment = Payment(invoice_id=invoice.id, amount=invoice.amount, status=status, reference=reference)
    db.add(payment)

    if status == PaymentStatus.SUCCESS:
        invoice.status = InvoiceStatus.PAID
        invoice.paid_at = datetime.utcnow()
        invoice.reference = reference
        if invoice.firm_id:
            log_audit(db, invoice.firm_id, auth.user_id, "invoice_paid", "invoice", invoice.id,
                      {"reference": reference, "amount": invoice.amount})
        logger.info(f"Invoice {invoice.id} paid ({reference})")
    else:
        logger.warning(f"Payment {reference} failed for invoice {invoice.id}")

    queue_row_change(db, f"user:{invoice.client_id}", invoice, "UPDATE")
    db.commit()
    return {"invoice": invoice, "payment": payment, "duplicate": False}


# =============================================================================
# LISTING / REVENUE
# =============================================================================

def list_client_invoices(db: Session, auth: AuthContext) -> List[Invoice]:
    return (
        db.query(Invoice)
        .filter(Invoice.client_id == auth.user_id)
        .order_by(Invoice.created_at.desc())
        .all()
    )


def list_firm_invoices(db: Session, auth: AuthContext, status: Optional[InvoiceStatus] = None) -> List[Invoice]:
    _require_billing_manager(auth)
    query = db.query(Invoice).filter(Invoice.firm_id == auth.firm_id)
    if status:
        query = query.filter(Invoice.status == status)
    return query.order_by(Invoice.created_at.desc()).all()


def get_revenue_summary(db: Session, auth: AuthContext, recent: int = 10) -> Dict[str, Any]:
    _require_billing_manager(auth)

    def _totals(statuses):
        amount, count = db.query(func.coalesce(func.sum(Invoice.amount), 0), func.count(Invoice.id)).filter(
            Invoice.firm_id == auth.firm_id,
            Invoice.status.in_(statuses),
        ).one()
        return int(amount or 0), int(count or 0)

    total_revenue, paid_count = _totals([InvoiceStatus.PAID])
    pending_revenue, pending_count = _totals(list(_OPEN_STATUSES))

    payments = (
        db.query(Payment, Invoice)
        .join(Invoice, Invoice.id == Payment.invoice_id)
        .filter(Invoice.firm_id == auth.firm_id, Payment.status == PaymentStatus.SUCCESS)
        .order_by(Payment.created_at.desc())
        .limit(recent)
        .all()
    )
    return {
        "currency": get_settings().currency,
        "total_revenue": total_revenue,
        "pending_revenue": pending_revenue,
        "paid_count": paid_count,
        "pending_count": pending_count,
        "recent_payments": [
            {
                "id": payment.id,
                "invoice_id": invoice.id,
                "matter_id": invoice.matter_id,
                "amount": payment.amount,
                "reference": payment.reference,
                "created_at": payment.created_at,
            }
            for payment, invoice in payments
        ],
    }
