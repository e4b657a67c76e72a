"""Dashboard route: this period's bills and every tenant's share."""

from __future__ import annotations

from typing import Any, Dict

from flask import Blueprint, Response, flash, redirect, render_template, request, url_for
from flask_login import login_required

from .. import get_repository, open_mailbox, signed_in_user
from ..actions import load_dashboard
from ..forms import parse_period_args
from ..services import categories_for_select

dashboard_bp = Blueprint("dashboard", __name__)


@dashboard_bp.app_context_processor
def inject_categories() -> Dict[str, Any]:
    """Expose category metadata to Jinja templates."""

    return {"utility_categories": list(categories_for_select())}


@dashboard_bp.get("/")
def index() -> Response:
    return redirect(url_for("dashboard.dashboard", **request.args))


@dashboard_bp.get("/dashboard")
@login_required
def dashboard() -> Any:
    """Render the consolidated bill for the selected month."""

    period, errors = parse_period_args(request.args)
    for error in errors:
        flash(error, "warning")

    result = load_dashboard(get_repository(), open_mailbox(), signed_in_user(), period)
    if not result.success:
        flash(result.error, "danger")
        return render_template("dashboard.html", period=period, data=None), 502
    return render_template("dashboard.html", period=period, data=result.data)
