"""HTTP routes for saved consolidated bills."""

from __future__ import annotations

from typing import Any, Dict, Optional

from flask import (
    Blueprint,
    Response,
    abort,
    current_app,
    flash,
    jsonify,
    redirect,
    render_template,
    request,
    url_for,
)
from flask_login import login_required

from packages.billing_common import (
    BillingPeriod,
    ConsolidatedBill,
    Tenant,
    compute_tenant_share,
    round_currency,
)

from .. import get_repository, limiter, mail_limits, open_mailbox, signed_in_user
from ..actions import (
    check_bill_payment,
    delete_bill,
    mark_bill_paid,
    save_tenant_bill,
    send_bill_email,
)
from ..errors import NotFoundError
from ..services import breakdown_rows, build_bill_email, build_preview

bills_bp = Blueprint("bills", __name__)


def _send_rate_limit_value() -> str:
    value = current_app.config.get("BILLS_SEND_RATE_LIMIT", "10 per minute")
    return str(value or "10 per minute")


def _load_bill(bill_id: int) -> ConsolidatedBill:
    try:
        return get_repository().get_consolidated_bill(signed_in_user().id, bill_id)
    except NotFoundError:
        abort(404)


def _tenant_of(bill: ConsolidatedBill) -> Optional[Tenant]:
    if bill.tenant_id is None:
        return None
    try:
        return get_repository().get_tenant(bill.user_id, bill.tenant_id)
    except NotFoundError:
        return None


@bills_bp.get("/")
@login_required
def history() -> str:
    """List every saved bill, newest period first."""

    repo = get_repository()
    user = signed_in_user()
    tenants = {tenant.id: tenant for tenant in repo.list_tenants(user.id)}
    bills = repo.list_consolidated_bills(user.id)
    return render_template("bills/index.html", bills=bills, tenants=tenants)


@bills_bp.post("/save")
@login_required
def save() -> Response:
    """Persist the current period's bill for one tenant."""

    try:
        tenant_id = int(request.form.get("tenant_id", ""))
        period = BillingPeriod(
            month=int(request.form.get("month", "")),
            year=int(request.form.get("year", "")),
        )
    except ValueError:
        flash("A tenant and a valid billing period are required.", "danger")
        return redirect(url_for("dashboard.dashboard"))

    result = save_tenant_bill(
        get_repository(), open_mailbox(), signed_in_user(), tenant_id, period
    )
    if not result.success:
        flash(result.error, "danger")
        return redirect(url_for("dashboard.dashboard", month=period.month, year=period.year))
    flash(f"Bill for {period.label} saved.", "success")
    return redirect(url_for("bills.detail", bill_id=result.data.id))


@bills_bp.get("/<int:bill_id>")
@login_required
def detail(bill_id: int) -> str:
    bill = _load_bill(bill_id)
    tenant = _tenant_of(bill)
    share = compute_tenant_share(bill, tenant) if tenant else None
    return render_template(
        "bills/detail.html",
        bill=bill,
        tenant=tenant,
        share=share,
        rows=breakdown_rows(bill, share) if share else [],
        preview_text=build_preview(bill, tenant) if tenant else "",
    )


@bills_bp.get("/<int:bill_id>.json")
@login_required
def export_json(bill_id: int) -> Response:
    """Return a JSON representation of a bill."""

    bill = _load_bill(bill_id)
    tenant = _tenant_of(bill)
    payload: Dict[str, Any] = {
        "id": bill.id,
        "month": bill.month,
        "year": bill.year,
        "tenant_id": bill.tenant_id,
        "total_amount": float(round_currency(bill.total_amount)),
        "paid": bill.paid,
        "date_sent": bill.date_sent.isoformat() if bill.date_sent else None,
        "date_paid": bill.date_paid.isoformat() if bill.date_paid else None,
        "payment_message_id": bill.payment_message_id,
        "categories": {
            category: {
                "provider_id": charge.provider_id,
                "provider_name": charge.provider_name,
                "amount": float(round_currency(charge.amount)),
                "message_ids": list(charge.message_ids),
            }
            for category, charge in bill.categories.items()
        },
    }
    if tenant is not None:
        share = compute_tenant_share(bill, tenant)
        payload["tenant_share"] = {
            "name": tenant.name,
            "email": tenant.email,
            "shares": {
                category: float(round_currency(amount))
                for category, amount in share.shares.items()
            },
            "total": float(round_currency(share.total)),
            "outstanding_balance": float(round_currency(tenant.outstanding_balance)),
            "amount_due": float(round_currency(share.amount_due)),
        }
    return jsonify(payload)


@bills_bp.get("/<int:bill_id>/preview")
@login_required
def preview(bill_id: int) -> str:
    """Show the email a tenant would receive for this bill."""

    bill = _load_bill(bill_id)
    tenant = _tenant_of(bill)
    if tenant is None:
        abort(404)
    content = build_bill_email(bill, tenant)
    return render_template(
        "bills/preview.html",
        bill=bill,
        tenant=tenant,
        subject=content.subject,
        email_html=content.html,
    )


@bills_bp.post("/<int:bill_id>/send")
@login_required
@limiter.limit(_send_rate_limit_value)
def send(bill_id: int) -> Response:
    result = send_bill_email(
        get_repository(), open_mailbox(), signed_in_user(), bill_id, mail_limits()
    )
    if result.success:
        flash("Bill emailed to tenant.", "success")
    else:
        flash(result.error, "warning")
    return redirect(url_for("bills.detail", bill_id=bill_id))


@bills_bp.post("/<int:bill_id>/paid")
@login_required
def paid(bill_id: int) -> Response:
    result = mark_bill_paid(get_repository(), signed_in_user(), bill_id)
    if result.success:
        flash("Bill marked as paid.", "success")
    else:
        flash(result.error, "danger")
    return redirect(url_for("bills.detail", bill_id=bill_id))


@bills_bp.post("/<int:bill_id>/check-payment")
@login_required
def check_payment(bill_id: int) -> Response:
    """Search the inbox for the tenant's payment notification."""

    result = check_bill_payment(get_repository(), open_mailbox(), signed_in_user(), bill_id)
    if not result.success:
        flash(result.error, "danger")
    elif result.data:
        flash("Payment found; bill marked as paid.", "success")
    else:
        flash("No payment found yet.", "info")
    return redirect(url_for("bills.detail", bill_id=bill_id))


@bills_bp.post("/<int:bill_id>/delete")
@login_required
def delete(bill_id: int) -> Response:
    result = delete_bill(get_repository(), signed_in_user(), bill_id)
    if result.success:
        flash("Bill deleted.", "info")
        return redirect(url_for("bills.history"))
    flash(result.error, "danger")
    return redirect(url_for("bills.detail", bill_id=bill_id))
