"""HTTP routes for managing tenants and their outstanding balances."""

from __future__ import annotations

from typing import Any

from flask import Blueprint, Response, abort, flash, redirect, render_template, request, url_for
from flask_login import login_required

from .. import get_repository, signed_in_user
from ..actions import create_tenant, delete_tenant, update_tenant, update_tenant_balance
from ..errors import NotFoundError
from ..forms import parse_balance_form, parse_tenant_form, share_field_name

tenants_bp = Blueprint("tenants", __name__)


@tenants_bp.app_context_processor
def inject_share_field_name() -> dict:
    return {"share_field_name": share_field_name}


@tenants_bp.get("/")
@login_required
def list_tenants() -> str:
    tenants = get_repository().list_tenants(signed_in_user().id)
    return render_template("tenants/index.html", tenants=tenants)


@tenants_bp.get("/new")
@login_required
def new() -> str:
    return render_template("tenants/form.html", tenant=None, errors=[], form={})


@tenants_bp.post("/")
@login_required
def create() -> Any:
    """Handle creation of a new tenant."""

    form_data, errors = parse_tenant_form(request.form)
    if errors or form_data is None:
        flash("Please correct the highlighted errors.", "danger")
        return (
            render_template("tenants/form.html", tenant=None, errors=errors, form=request.form),
            400,
        )

    result = create_tenant(
        get_repository(),
        signed_in_user(),
        form_data.name,
        form_data.email,
        form_data.shares,
        secondary_name=form_data.secondary_name,
    )
    if not result.success:
        flash(result.error, "danger")
        return render_template(
            "tenants/form.html", tenant=None, errors=[result.error], form=request.form
        ), 400
    flash(f'Tenant "{result.data.name}" added.', "success")
    return redirect(url_for("tenants.list_tenants"))


def _load_tenant(tenant_id: int):
    try:
        return get_repository().get_tenant(signed_in_user().id, tenant_id)
    except NotFoundError:
        abort(404)


@tenants_bp.get("/<int:tenant_id>/edit")
@login_required
def edit(tenant_id: int) -> str:
    tenant = _load_tenant(tenant_id)
    return render_template("tenants/form.html", tenant=tenant, errors=[], form={})


@tenants_bp.post("/<int:tenant_id>")
@login_required
def update(tenant_id: int) -> Any:
    tenant = _load_tenant(tenant_id)
    form_data, errors = parse_tenant_form(request.form)
    if errors or form_data is None:
        flash("Please correct the highlighted errors.", "danger")
        return (
            render_template("tenants/form.html", tenant=tenant, errors=errors, form=request.form),
            400,
        )

    result = update_tenant(
        get_repository(),
        signed_in_user(),
        tenant_id,
        form_data.name,
        form_data.email,
        form_data.shares,
        secondary_name=form_data.secondary_name,
    )
    if not result.success:
        flash(result.error, "danger")
        return redirect(url_for("tenants.edit", tenant_id=tenant_id))
    flash("Tenant updated.", "success")
    return redirect(url_for("tenants.list_tenants"))


@tenants_bp.post("/<int:tenant_id>/balance")
@login_required
def update_balance(tenant_id: int) -> Response:
    """Set the tenant's carried-over balance."""

    balance, errors = parse_balance_form(request.form)
    if errors or balance is None:
        for error in errors:
            flash(error, "danger")
        return redirect(url_for("tenants.list_tenants"))

    result = update_tenant_balance(get_repository(), signed_in_user(), tenant_id, balance)
    if result.success:
        flash(f"Outstanding balance set to ${result.data:.2f}.", "success")
    else:
        flash(result.error, "danger")
    return redirect(url_for("tenants.list_tenants"))


@tenants_bp.post("/<int:tenant_id>/delete")
@login_required
def delete(tenant_id: int) -> Response:
    result = delete_tenant(get_repository(), signed_in_user(), tenant_id)
    if result.success:
        flash("Tenant deleted.", "success")
    else:
        flash(result.error, "danger")
    return redirect(url_for("tenants.list_tenants"))
