"""HTTP routes for managing utility providers."""

from __future__ import annotations

from typing import Any

from flask import Blueprint, Response, abort, flash, redirect, render_template, request, url_for
from flask_login import login_required

from .. import get_repository, signed_in_user
from ..actions import create_provider, delete_provider, update_provider
from ..errors import NotFoundError
from ..forms import parse_provider_form

providers_bp = Blueprint("providers", __name__)


@providers_bp.get("/")
@login_required
def list_providers() -> str:
    providers = get_repository().list_providers(signed_in_user().id)
    return render_template("providers/index.html", providers=providers, errors=[], form={})


@providers_bp.post("/")
@login_required
def create() -> Any:
    """Handle creation of a new provider."""

    user = signed_in_user()
    form_data, errors = parse_provider_form(request.form)
    if errors or form_data is None:
        flash("Please correct the highlighted errors.", "danger")
        providers = get_repository().list_providers(user.id)
        return (
            render_template(
                "providers/index.html", providers=providers, errors=errors, form=request.form
            ),
            400,
        )

    result = create_provider(get_repository(), user, form_data.name, form_data.category)
    if result.success:
        flash(f'Provider "{result.data.name}" added.', "success")
    else:
        flash(result.error, "danger")
    return redirect(url_for("providers.list_providers"))


@providers_bp.get("/<int:provider_id>/edit")
@login_required
def edit(provider_id: int) -> str:
    try:
        provider = get_repository().get_provider(signed_in_user().id, provider_id)
    except NotFoundError:
        abort(404)
    return render_template("providers/edit.html", provider=provider, errors=[])


@providers_bp.post("/<int:provider_id>")
@login_required
def update(provider_id: int) -> Any:
    user = signed_in_user()
    repo = get_repository()
    try:
        provider = repo.get_provider(user.id, provider_id)
    except NotFoundError:
        abort(404)

    form_data, errors = parse_provider_form(request.form)
    if errors or form_data is None:
        flash("Please correct the highlighted errors.", "danger")
        return render_template("providers/edit.html", provider=provider, errors=errors), 400

    result = update_provider(repo, user, provider_id, form_data.name, form_data.category)
    if not result.success:
        flash(result.error, "danger")
        return redirect(url_for("providers.edit", provider_id=provider_id))
    flash("Provider updated.", "success")
    return redirect(url_for("providers.list_providers"))


@providers_bp.post("/<int:provider_id>/delete")
@login_required
def delete(provider_id: int) -> Response:
    result = delete_provider(get_repository(), signed_in_user(), provider_id)
    if result.success:
        flash("Provider deleted.", "success")
    else:
        flash(result.error, "danger")
    return redirect(url_for("providers.list_providers"))
