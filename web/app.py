"""Flask web application for digital signage asset management."""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import urlsplit

# Add parent directory to path for package imports
import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from flask import (
    Blueprint,
    Flask,
    Response,
    abort,
    current_app,
    flash,
    jsonify,
    redirect,
    render_template,
    request,
    session,
    url_for,
)
from werkzeug.security import generate_password_hash

from signage import repository
from signage.auth import (
    ROLES,
    USER_STATUSES,
    authenticate,
    current_user,
    login_required,
    role_required,
    session_changed,
    sign_in,
    sign_out,
    sign_up,
)
from signage.calculations import asset_maintenance_status
from signage.config import load_config
from signage.db import db
from signage.errors import SignageError, ValidationError
from signage.filters import WARRANTY_FILTERS, AssetFilter, apply_pipeline
from signage.loader import (
    FIELD_LABELS,
    asset_to_dict,
    export_assets_csv,
    export_assets_json,
    export_categories_csv,
    export_categories_json,
    import_assets,
    import_template_csv,
)
from signage.logging_setup import setup_app_logging
from signage.reports import build_dashboard, build_report, export_report_csv, map_points
from signage.schedule import IntervalUnit
from signage.status import MaintenanceStatus
from signage.validation import field_spec, get_schema, validate_form

logger = logging.getLogger("signage.web")

bp = Blueprint("main", __name__)

# Roles allowed to change data; viewers are read-only.
EDITOR_ROLES = ("admin", "manager", "user")

ASSET_SORT_KEYS = {
    "name": "Name",
    "status": "Status",
    "serial_number": "Serial Number",
    "installation_date": "Installed",
    "next_maintenance_date": "Next Maintenance",
    "warranty_end": "Warranty End",
    "created_at": "Created",
}

ASSET_FORM_SECTIONS = [
    ("Basic Information", ["name", "category_id", "master_asset_id", "status", "description"]),
    (
        "Location",
        [
            "location_id",
            "section_id",
            "sub_section_id",
            "zone_id",
            "asset_location",
            "google_location",
            "latitude",
            "longitude",
        ],
    ),
    (
        "Hardware",
        [
            "manufacturer",
            "model_number",
            "serial_number",
            "mac_address",
            "ip_address",
            "barcode",
            "screen_size",
            "resolution",
            "power_consumption",
            "operating_system",
        ],
    ),
    (
        "Lifecycle",
        [
            "purchase_date",
            "installation_date",
            "warranty_start_date",
            "warranty_period_months",
            "warranty_end_date",
        ],
    ),
    (
        "Signage Configuration",
        ["content_management_system", "display_orientation", "operating_hours", "brightness_level"],
    ),
    ("Maintenance", ["maintenance_schedule_id", "last_maintenance_date"]),
]

# Fields copied from a master asset when creating an asset from it.
MASTER_TEMPLATE_FIELDS = [
    "category_id",
    "manufacturer",
    "model_number",
    "description",
    "screen_size",
    "resolution",
    "power_consumption",
    "operating_system",
    "maintenance_schedule_id",
]

SESSION_FILTER_KEY = "asset_filter"


# =============================================================================
# Formatting helpers
# =============================================================================


def format_date(value):
    """Format a date or datetime as YYYY-MM-DD."""
    if value is None:
        return "—"
    return value.strftime("%Y-%m-%d")


def format_datetime(value):
    """Format a datetime for display, dropping a midnight time of day."""
    if value is None:
        return "—"
    if isinstance(value, datetime) and (value.hour, value.minute) != (0, 0):
        return value.strftime("%Y-%m-%d %H:%M")
    return value.strftime("%Y-%m-%d")


def format_minutes(minutes):
    """Format a duration in minutes as e.g. '1h 30m'."""
    if not minutes:
        return "—"
    minutes = int(round(minutes))
    hours, rest = divmod(minutes, 60)
    if hours and rest:
        return f"{hours}h {rest}m"
    if hours:
        return f"{hours}h"
    return f"{rest}m"


def humanize(name: str) -> str:
    """Field name to label: 'sub_section_id' -> 'Sub-section ID'."""
    if name in FIELD_LABELS and name != "name":
        return FIELD_LABELS[name]
    if name.endswith("_id"):
        name = name[: -len("_id")]
    return name.replace("_", " ").capitalize()


def status_color(status: MaintenanceStatus) -> str:
    """Get Tailwind color classes for a maintenance status."""
    colors = {
        MaintenanceStatus.OVERDUE: "bg-red-100 text-red-800 border-red-200",
        MaintenanceStatus.DUE_TODAY: "bg-orange-100 text-orange-800 border-orange-200",
        MaintenanceStatus.DUE_THIS_WEEK: "bg-yellow-100 text-yellow-800 border-yellow-200",
        MaintenanceStatus.DUE_THIS_MONTH: "bg-blue-100 text-blue-800 border-blue-200",
        MaintenanceStatus.DUE_NEXT_30_DAYS: "bg-indigo-100 text-indigo-800 border-indigo-200",
        MaintenanceStatus.UPCOMING: "bg-green-100 text-green-800 border-green-200",
        MaintenanceStatus.NO_MAINTENANCE: "bg-gray-100 text-gray-500 border-gray-200",
    }
    return colors.get(status, "bg-gray-100 text-gray-800")


def status_badge_color(status: MaintenanceStatus) -> str:
    """Get Tailwind color classes for a maintenance status badge."""
    colors = {
        MaintenanceStatus.OVERDUE: "bg-red-500 text-white",
        MaintenanceStatus.DUE_TODAY: "bg-orange-500 text-white",
        MaintenanceStatus.DUE_THIS_WEEK: "bg-yellow-500 text-white",
        MaintenanceStatus.DUE_THIS_MONTH: "bg-blue-500 text-white",
        MaintenanceStatus.DUE_NEXT_30_DAYS: "bg-indigo-500 text-white",
        MaintenanceStatus.UPCOMING: "bg-green-500 text-white",
        MaintenanceStatus.NO_MAINTENANCE: "bg-gray-400 text-white",
    }
    return colors.get(status, "bg-gray-500 text-white")


def asset_status_color(status: Optional[str]) -> str:
    colors = {
        "active": "bg-green-100 text-green-800",
        "inactive": "bg-gray-100 text-gray-600",
        "maintenance": "bg-yellow-100 text-yellow-800",
        "retired": "bg-red-100 text-red-700",
    }
    return colors.get(status, "bg-gray-100 text-gray-800")


def warranty_color(state: Optional[str]) -> str:
    colors = {
        "active": "text-green-700",
        "expiring": "text-yellow-700",
        "expired": "text-red-700",
    }
    return colors.get(state, "text-gray-500")


def flash_error(e: SignageError) -> None:
    """Flash a user-facing message for any application error."""
    if isinstance(e, ValidationError) and e.errors:
        for name, message in e.errors.items():
            flash(f"{humanize(name)}: {message}", "error")
    else:
        flash(e.message, "error")


def form_fields(kind: str, names: Optional[List[str]] = None) -> List[Dict[str, Any]]:
    """Describe schema properties as form inputs for the field macro."""
    schema = get_schema(kind)
    required = set(schema.get("required", []))
    fields = []
    for name in names or list(schema["properties"]):
        spec = field_spec(schema, name)
        if "enum" in spec:
            widget = "select"
        elif spec.get("format") == "date":
            widget = "date"
        elif spec.get("x-datetime"):
            widget = "datetime-local"
        elif spec.get("type") in ("integer", "number"):
            widget = "number"
        elif name in ("description",):
            widget = "textarea"
        elif name.endswith("_id"):
            widget = "reference"
        else:
            widget = "text"
        fields.append(
            {
                "name": name,
                "label": humanize(name),
                "widget": widget,
                "options": spec.get("enum", []),
                "required": name in required,
                "step": "any" if spec.get("type") == "number" else "1",
                "min": spec.get("minimum"),
                "max": spec.get("maximum"),
            }
        )
    return fields


def reference_options() -> Dict[str, List[Any]]:
    """Choices for every foreign-key select in the asset and template forms."""
    return {
        "category_id": repository.list_categories(),
        "master_asset_id": repository.list_master_assets(),
        "maintenance_schedule_id": repository.list_schedules(),
        "location_id": repository.list_locations(),
        "section_id": repository.list_sections(),
        "sub_section_id": repository.list_sub_sections(),
        "zone_id": repository.list_zones(),
    }


def local_url(target: Optional[str], default: str) -> str:
    """Return target when it is a path on this site, else default."""
    if not target or not target.startswith("/") or "\\" in target:
        return default
    parts = urlsplit(target)
    if parts.scheme or parts.netloc:
        return default
    return target


def get_page_arg(name: str = "page", default: int = 1) -> int:
    try:
        return max(1, int(request.args.get(name, default)))
    except ValueError:
        return default


def csv_download(text: str, filename: str, mimetype: str = "text/csv") -> Response:
    return Response(
        text,
        mimetype=mimetype,
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


def _clear_saved_state(sender, user=None, **extra):
    """Drop session-scoped view state whenever the signed-in user changes."""
    session.pop(SESSION_FILTER_KEY, None)


def _log_unhandled_exception(exc):
    if exc is not None:
        current_app.logger.exception("Unhandled exception", exc_info=exc)


def _inject_globals():
    user = current_user()
    return {
        "current_user": user,
        "can_edit": user is not None and user.role in EDITOR_ROLES,
        "MaintenanceStatus": MaintenanceStatus,
    }


def create_app(test_config: Optional[Dict[str, Any]] = None) -> Flask:
    """Application factory. test_config overrides any configured value."""
    app = Flask(__name__)
    app.config.update(load_config(test_config))
    setup_app_logging(app)

    db.init_app(app)
    with app.app_context():
        db.create_all()

    # Register template filters
    app.jinja_env.filters["format_date"] = format_date
    app.jinja_env.filters["format_datetime"] = format_datetime
    app.jinja_env.filters["format_minutes"] = format_minutes
    app.jinja_env.filters["humanize"] = humanize
    app.jinja_env.filters["status_color"] = status_color
    app.jinja_env.filters["status_badge_color"] = status_badge_color
    app.jinja_env.filters["asset_status_color"] = asset_status_color
    app.jinja_env.filters["warranty_color"] = warranty_color

    app.context_processor(_inject_globals)
    app.teardown_request(_log_unhandled_exception)
    session_changed.connect(_clear_saved_state, sender=app)

    app.register_blueprint(bp)
    app.logger.info("Started with database %s", app.config["SQLALCHEMY_DATABASE_URI"])
    return app


# =============================================================================
# Auth
# =============================================================================


@bp.route("/auth/sign-up", endpoint="sign_up", methods=["GET", "POST"])
def sign_up_page():
    if request.method == "POST":
        try:
            data = validate_form("sign_up", request.form)
            if request.form.get("password") != request.form.get("password_confirm"):
                raise ValidationError({"password_confirm": "Passwords do not match"})
            sign_up(data["email"], data["password"], data["full_name"])
        except ValidationError as e:
            return render_template("auth/sign_up.html", errors=e.errors, form=request.form), 400
        except SignageError as e:
            flash_error(e)
            return render_template("auth/sign_up.html", errors={}, form=request.form), 400
        return redirect(url_for("main.sign_up_success"))
    return render_template("auth/sign_up.html", errors={}, form={})


@bp.route("/auth/sign-up-success")
def sign_up_success():
    return render_template("auth/sign_up_success.html")


@bp.route("/auth/sign-in", endpoint="sign_in", methods=["GET", "POST"])
def sign_in_page():
    if request.method == "POST":
        try:
            data = validate_form("sign_in", request.form)
            user = authenticate(data["email"], data["password"])
        except ValidationError as e:
            return render_template("auth/sign_in.html", errors=e.errors, form=request.form), 400
        except SignageError as e:
            flash_error(e)
            return render_template("auth/sign_in.html", errors={}, form=request.form), 401
        sign_in(current_app._get_current_object(), user)
        return redirect(local_url(request.args.get("next"), url_for("main.index")))
    return render_template("auth/sign_in.html", errors={}, form={})


@bp.route("/auth/sign-out", endpoint="sign_out", methods=["POST"])
def sign_out_page():
    sign_out(current_app._get_current_object())
    flash("Signed out", "success")
    return redirect(url_for("main.sign_in"))


# =============================================================================
# Dashboard
# =============================================================================


@bp.route("/")
@login_required
def index():
    """Dashboard with fleet totals, distributions and upcoming maintenance."""
    now = datetime.now()
    assets = repository.list_assets()
    dashboard = build_dashboard(
        assets, repository.list_categories(), repository.list_master_assets(), now
    )
    return render_template(
        "dashboard.html",
        dashboard=dashboard,
        now=now,
        status_of=lambda asset: asset_maintenance_status(asset, now),
    )


# =============================================================================
# Assets
# =============================================================================


def _current_asset_filter() -> AssetFilter:
    """Filter from the query string, else the one saved in the session."""
    filter_args = {k: v for k, v in request.args.items() if k not in ("page", "sort", "dir", "page_size")}
    if request.args.get("reset"):
        session.pop(SESSION_FILTER_KEY, None)
        return AssetFilter()
    if filter_args:
        flt = AssetFilter.from_args(filter_args)
        session[SESSION_FILTER_KEY] = flt.to_args()
        return flt
    return AssetFilter.from_args(session.get(SESSION_FILTER_KEY, {}))


@bp.route("/assets")
@login_required
def assets_list():
    """Asset list with filters, sorting and pagination."""
    now = datetime.now()
    flt = _current_asset_filter()
    sort_key = request.args.get("sort", "name")
    if sort_key not in ASSET_SORT_KEYS:
        sort_key = "name"
    direction = "desc" if request.args.get("dir") == "desc" else "asc"
    try:
        page_size = max(1, int(request.args.get("page_size", current_app.config["PAGE_SIZE"])))
    except ValueError:
        page_size = current_app.config["PAGE_SIZE"]

    schedules = repository.list_schedules()
    page = apply_pipeline(
        repository.list_assets(),
        flt,
        now,
        sort_key=sort_key,
        direction=direction,
        page=get_page_arg(),
        page_size=page_size,
        schedules={s.id: s for s in schedules},
    )

    context = dict(
        page=page,
        flt=flt,
        filter_args=flt.to_args(),
        sort_key=sort_key,
        direction=direction,
        page_size=page_size,
        sort_keys=ASSET_SORT_KEYS,
        warranty_filters=WARRANTY_FILTERS,
        service_types=sorted({s.service_type for s in schedules}),
        options=reference_options(),
        now=now,
        status_of=lambda asset: asset_maintenance_status(asset, now),
    )
    if request.headers.get("HX-Request"):
        return render_template("partials/asset_table.html", **context)
    return render_template("assets.html", **context)


def _asset_form_context(values: Dict[str, Any], errors: Dict[str, str], asset=None):
    return dict(
        asset=asset,
        values=values,
        errors=errors,
        sections=[(title, form_fields("asset", names)) for title, names in ASSET_FORM_SECTIONS],
        options=reference_options(),
    )


def _master_defaults(master_asset_id: Optional[str]) -> Dict[str, Any]:
    if not master_asset_id:
        return {}
    try:
        master = repository.get_master_asset(master_asset_id)
    except SignageError as e:
        flash_error(e)
        return {}
    values = {name: getattr(master, name) for name in MASTER_TEMPLATE_FIELDS}
    values["master_asset_id"] = master.id
    return {k: v for k, v in values.items() if v is not None}


@bp.route("/assets/new", methods=["GET", "POST"])
@role_required(*EDITOR_ROLES)
def asset_new():
    if request.method == "POST":
        try:
            data = validate_form("asset", request.form)
            data.pop("version_id", None)
            asset = repository.create_asset(data, current_user())
        except ValidationError as e:
            return render_template("asset_form.html", **_asset_form_context(request.form, e.errors)), 400
        except SignageError as e:
            flash_error(e)
            return render_template("asset_form.html", **_asset_form_context(request.form, {})), 400
        flash(f"Created asset: {asset.name}", "success")
        return redirect(url_for("main.asset_detail", asset_id=asset.id))

    values = _master_defaults(request.args.get("master_asset_id"))
    return render_template("asset_form.html", **_asset_form_context(values, {}))


@bp.route("/assets/<asset_id>")
@login_required
def asset_detail(asset_id: str):
    try:
        asset = repository.get_asset(asset_id)
    except SignageError as e:
        flash_error(e)
        return redirect(url_for("main.assets_list"))
    now = datetime.now()
    return render_template(
        "asset_detail.html",
        asset=asset,
        now=now,
        maintenance_status=asset_maintenance_status(asset, now),
        warranty_state=asset.warranty_status(now),
        schedules=repository.list_schedules(),
    )


@bp.route("/assets/edit/<asset_id>", methods=["GET", "POST"])
@role_required(*EDITOR_ROLES)
def asset_edit(asset_id: str):
    try:
        asset = repository.get_asset(asset_id)
    except SignageError as e:
        flash_error(e)
        return redirect(url_for("main.assets_list"))

    if request.method == "POST":
        try:
            data = validate_form("asset", request.form)
            expected_version = data.pop("version_id", None)
            repository.update_asset(asset_id, data, expected_version=expected_version)
        except ValidationError as e:
            return (
                render_template("asset_form.html", **_asset_form_context(request.form, e.errors, asset)),
                400,
            )
        except SignageError as e:
            flash_error(e)
            return redirect(url_for("main.asset_edit", asset_id=asset_id))
        flash(f"Updated asset: {asset.name}", "success")
        return redirect(url_for("main.asset_detail", asset_id=asset_id))

    values = asset_to_dict(asset)
    values["version_id"] = asset.version_id
    return render_template("asset_form.html", **_asset_form_context(values, {}, asset))


@bp.route("/assets/<asset_id>/delete", methods=["POST"])
@role_required(*EDITOR_ROLES)
def asset_delete(asset_id: str):
    try:
        repository.delete_asset(asset_id)
    except SignageError as e:
        flash_error(e)
        return redirect(url_for("main.asset_detail", asset_id=asset_id))
    flash("Asset deleted", "success")
    return redirect(url_for("main.assets_list"))


@bp.route("/assets/bulk-delete", methods=["POST"])
@role_required(*EDITOR_ROLES)
def assets_bulk_delete():
    ids = request.form.getlist("asset_ids")
    if not ids:
        flash("Select at least one asset", "error")
        return redirect(url_for("main.assets_list"))
    try:
        count = repository.delete_assets(ids)
    except SignageError as e:
        flash_error(e)
        return redirect(url_for("main.assets_list"))
    flash(f"Deleted {count} asset{'s' if count != 1 else ''}", "success")
    return redirect(url_for("main.assets_list"))


# =============================================================================
# Categories
# =============================================================================


@bp.route("/asset-categories", methods=["GET", "POST"])
@login_required
def categories():
    errors: Dict[str, str] = {}
    if request.method == "POST":
        if current_user().role not in EDITOR_ROLES:
            abort(403)
        try:
            category = repository.create_category(validate_form("category", request.form))
        except ValidationError as e:
            errors = e.errors
        except SignageError as e:
            flash_error(e)
        else:
            flash(f"Created category: {category.name}", "success")
            return redirect(url_for("main.categories"))

    search = request.args.get("q", "").strip().lower()
    items = repository.list_categories()
    if search:
        items = [
            c for c in items
            if search in c.name.lower() or search in (c.description or "").lower()
        ]
    return render_template(
        "categories.html",
        categories=items,
        counts=repository.category_asset_counts(),
        search=search,
        errors=errors,
        form=request.form,
    ), (400 if errors else 200)


@bp.route("/asset-categories/<category_id>/edit", methods=["POST"])
@role_required(*EDITOR_ROLES)
def category_edit(category_id: str):
    try:
        category = repository.update_category(category_id, validate_form("category", request.form))
    except SignageError as e:
        flash_error(e)
    else:
        flash(f"Updated category: {category.name}", "success")
    return redirect(url_for("main.categories"))


@bp.route("/asset-categories/<category_id>/delete", methods=["POST"])
@role_required(*EDITOR_ROLES)
def category_delete(category_id: str):
    try:
        repository.delete_category(category_id)
    except SignageError as e:
        flash_error(e)
    else:
        flash("Category deleted", "success")
    return redirect(url_for("main.categories"))


# =============================================================================
# Master assets (asset library)
# =============================================================================


def _master_form(values, errors, master=None, status=200):
    fields = form_fields("master_asset")
    return render_template(
        "master_asset_form.html",
        master=master,
        values=values,
        errors=errors,
        fields=fields,
        options=reference_options(),
        connectivity_choices=["WiFi", "Ethernet", "Bluetooth", "HDMI", "USB", "4G/LTE"],
    ), status


@bp.route("/asset-library")
@login_required
def asset_library():
    search = request.args.get("q", "").strip().lower()
    category_id = request.args.get("category_id") or None
    masters = repository.list_master_assets()
    if search:
        masters = [
            m for m in masters
            if search in m.name.lower()
            or search in (m.manufacturer or "").lower()
            or search in (m.model_number or "").lower()
        ]
    if category_id:
        masters = [m for m in masters if m.category_id == category_id]
    return render_template(
        "asset_library.html",
        masters=masters,
        categories=repository.list_categories(),
        search=search,
        category_id=category_id,
    )


@bp.route("/asset-library/new", methods=["GET", "POST"])
@role_required(*EDITOR_ROLES)
def master_asset_new():
    if request.method == "POST":
        try:
            master = repository.create_master_asset(validate_form("master_asset", request.form))
        except ValidationError as e:
            return _master_form(request.form, e.errors, status=400)
        except SignageError as e:
            flash_error(e)
            return _master_form(request.form, {}, status=400)
        flash(f"Created master asset: {master.name}", "success")
        return redirect(url_for("main.asset_library"))
    return _master_form({}, {})


@bp.route("/asset-library/<master_asset_id>/edit", methods=["GET", "POST"])
@role_required(*EDITOR_ROLES)
def master_asset_edit(master_asset_id: str):
    try:
        master = repository.get_master_asset(master_asset_id)
    except SignageError as e:
        flash_error(e)
        return redirect(url_for("main.asset_library"))

    if request.method == "POST":
        try:
            repository.update_master_asset(
                master_asset_id, validate_form("master_asset", request.form)
            )
        except ValidationError as e:
            return _master_form(request.form, e.errors, master, status=400)
        except SignageError as e:
            flash_error(e)
            return _master_form(request.form, {}, master, status=400)
        flash(f"Updated master asset: {master.name}", "success")
        return redirect(url_for("main.asset_library"))

    values = {name: getattr(master, name) for name in repository.MASTER_ASSET_FIELDS}
    values["connectivity"] = master.connectivity_list
    return _master_form(values, {}, master)


@bp.route("/asset-library/<master_asset_id>/delete", methods=["POST"])
@role_required(*EDITOR_ROLES)
def master_asset_delete(master_asset_id: str):
    try:
        repository.delete_master_asset(master_asset_id)
    except SignageError as e:
        flash_error(e)
    else:
        flash("Master asset deleted", "success")
    return redirect(url_for("main.asset_library"))


# =============================================================================
# Maintenance schedules
# =============================================================================


def _schedule_form(values, errors, schedule=None, status=200):
    return render_template(
        "schedule_form.html",
        schedule=schedule,
        values=values,
        errors=errors,
        fields=form_fields("maintenance_schedule"),
    ), status


@bp.route("/maintenance-schedules")
@login_required
def schedules():
    items = repository.list_schedules()
    usage = {}
    for asset in repository.list_assets():
        if asset.maintenance_schedule_id:
            usage[asset.maintenance_schedule_id] = usage.get(asset.maintenance_schedule_id, 0) + 1
    return render_template(
        "schedules.html", schedules=items, usage=usage, units=[u.value for u in IntervalUnit]
    )


@bp.route("/service-schemes/create", methods=["GET", "POST"])
@role_required(*EDITOR_ROLES)
def schedule_new():
    if request.method == "POST":
        try:
            schedule = repository.create_schedule(
                validate_form("maintenance_schedule", request.form)
            )
        except ValidationError as e:
            return _schedule_form(request.form, e.errors, status=400)
        except SignageError as e:
            flash_error(e)
            return _schedule_form(request.form, {}, status=400)
        flash(f"Created maintenance schedule: {schedule.name}", "success")
        return redirect(url_for("main.schedules"))
    return _schedule_form({}, {})


@bp.route("/maintenance-schedules/<schedule_id>/edit", methods=["GET", "POST"])
@role_required(*EDITOR_ROLES)
def schedule_edit(schedule_id: str):
    try:
        schedule = repository.get_schedule(schedule_id)
    except SignageError as e:
        flash_error(e)
        return redirect(url_for("main.schedules"))

    if request.method == "POST":
        try:
            repository.update_schedule(
                schedule_id, validate_form("maintenance_schedule", request.form)
            )
        except ValidationError as e:
            return _schedule_form(request.form, e.errors, schedule, status=400)
        except SignageError as e:
            flash_error(e)
            return _schedule_form(request.form, {}, schedule, status=400)
        flash(f"Updated maintenance schedule: {schedule.name}", "success")
        return redirect(url_for("main.schedules"))

    values = {
        name: getattr(schedule, name)
        for name in ("name", "service_type", "interval_value", "interval_unit", "description")
    }
    return _schedule_form(values, {}, schedule)


@bp.route("/maintenance-schedules/<schedule_id>/delete", methods=["POST"])
@role_required(*EDITOR_ROLES)
def schedule_delete(schedule_id: str):
    try:
        repository.delete_schedule(schedule_id)
    except SignageError as e:
        flash_error(e)
    else:
        flash("Maintenance schedule deleted", "success")
    return redirect(url_for("main.schedules"))


# =============================================================================
# Maintenance board
# =============================================================================


@bp.route("/maintenance")
@login_required
def maintenance():
    """Assets grouped by maintenance status, most urgent first."""
    now = datetime.now()
    status_filter = request.args.get("status", "").lower() or None
    service_type = request.args.get("service_type") or None
    schedules = {s.id: s for s in repository.list_schedules()}

    rows = []
    for asset in repository.list_assets():
        schedule = schedules.get(asset.maintenance_schedule_id)
        if service_type and (schedule is None or schedule.service_type != service_type):
            continue
        rows.append((asset, schedule, asset_maintenance_status(asset, now)))

    # Calculate counts before filtering for display
    status_counts = {status: 0 for status in MaintenanceStatus}
    for _, _, status in rows:
        status_counts[status] += 1

    if status_filter:
        try:
            wanted = MaintenanceStatus.from_key(status_filter)
        except ValueError:
            wanted = None
        if wanted is not None:
            rows = [r for r in rows if r[2] == wanted]

    # Sort by urgency (OVERDUE first), then by due date
    rows.sort(key=lambda r: (r[2].value, r[0].next_maintenance_date or datetime.max, r[0].name.lower()))

    context = dict(
        rows=rows,
        status_counts=status_counts,
        status_filter=status_filter,
        service_type=service_type,
        service_types=sorted({s.service_type for s in schedules.values()}),
        schedules=list(schedules.values()),
        now=now,
    )
    if request.headers.get("HX-Request"):
        return render_template("partials/maintenance_table.html", **context)
    return render_template("maintenance.html", **context)


@bp.route("/maintenance/<asset_id>/assign", methods=["POST"])
@role_required(*EDITOR_ROLES)
def maintenance_assign(asset_id: str):
    """Link an asset to a schedule and compute its next due date."""
    try:
        data = validate_form("assign_schedule", request.form)
        asset = repository.assign_schedule(
            asset_id, data["schedule_id"], data["last_maintenance_date"]
        )
    except SignageError as e:
        flash_error(e)
    else:
        flash(
            f"Scheduled {asset.name}: next maintenance {format_datetime(asset.next_maintenance_date)}",
            "success",
        )
    return redirect(_next_url(url_for("main.maintenance")))


@bp.route("/maintenance/<asset_id>/record", methods=["POST"])
@role_required(*EDITOR_ROLES)
def maintenance_record(asset_id: str):
    """Log a completed service."""
    try:
        data = validate_form("record_maintenance", request.form)
        asset = repository.record_maintenance(asset_id, data["performed_at"], data["minutes"])
    except SignageError as e:
        flash_error(e)
    else:
        flash(f"Logged maintenance for {asset.name}", "success")
    return redirect(_next_url(url_for("main.maintenance")))


# =============================================================================
# Locations
# =============================================================================


@bp.route("/locations")
@login_required
def locations():
    return render_template(
        "locations.html",
        locations=repository.list_locations(),
        levels=repository.LOCATION_LEVELS,
    )


@bp.route("/locations/<level>", methods=["POST"])
@role_required(*EDITOR_ROLES)
def location_create(level: str):
    if level not in repository.LOCATION_LEVELS:
        abort(404)
    try:
        record = repository.create_location_level(level, validate_form(level, request.form))
    except SignageError as e:
        flash_error(e)
    else:
        flash(f"Created {humanize(level).lower()}: {record.name}", "success")
    return redirect(url_for("main.locations"))


@bp.route("/locations/<level>/<record_id>/rename", methods=["POST"])
@role_required(*EDITOR_ROLES)
def location_rename(level: str, record_id: str):
    if level not in repository.LOCATION_LEVELS:
        abort(404)
    try:
        data = validate_form("location", request.form)
        record = repository.update_location_level(level, record_id, data)
    except SignageError as e:
        flash_error(e)
    else:
        flash(f"Renamed to {record.name}", "success")
    return redirect(url_for("main.locations"))


@bp.route("/locations/<level>/<record_id>/delete", methods=["POST"])
@role_required(*EDITOR_ROLES)
def location_delete(level: str, record_id: str):
    if level not in repository.LOCATION_LEVELS:
        abort(404)
    try:
        repository.delete_location_level(level, record_id)
    except SignageError as e:
        flash_error(e)
    else:
        flash(f"{humanize(level)} deleted", "success")
    return redirect(url_for("main.locations"))


def _next_url(default: str) -> str:
    """Same-site return path posted with a form, else the default."""
    return local_url(request.form.get("next"), default)


def _options_json(records):
    return jsonify([{"id": r.id, "name": r.name} for r in records])


@bp.route("/api/locations")
@login_required
def api_locations():
    return _options_json(repository.list_locations())


@bp.route("/api/locations/<location_id>/sections")
@login_required
def api_sections(location_id: str):
    """Cascade: sections of a location."""
    return _options_json(repository.list_sections(location_id))


@bp.route("/api/locations/sections/<section_id>/sub-sections")
@login_required
def api_sub_sections(section_id: str):
    return _options_json(repository.list_sub_sections(section_id))


@bp.route("/api/locations/sub-sections/<sub_section_id>/zones")
@login_required
def api_zones(sub_section_id: str):
    return _options_json(repository.list_zones(sub_section_id))


@bp.route("/api/assets/map")
@login_required
def api_asset_map():
    """Markers for the dashboard map."""
    return jsonify(map_points(repository.list_assets(), datetime.now()))


# =============================================================================
# Reports
# =============================================================================


def _report_from_args():
    return build_report(
        repository.list_assets(),
        datetime.now(),
        location_id=request.args.get("location_id") or None,
        category_id=request.args.get("category_id") or None,
    )


@bp.route("/reports")
@login_required
def reports():
    return render_template(
        "reports.html",
        report=_report_from_args(),
        locations=repository.list_locations(),
        categories=repository.list_categories(),
        location_id=request.args.get("location_id") or "",
        category_id=request.args.get("category_id") or "",
    )


@bp.route("/reports/export.csv")
@login_required
def reports_export():
    report = _report_from_args()
    filename = f"signage-report-{report.generated_at:%Y-%m-%d}.csv"
    return csv_download(export_report_csv(report), filename)


# =============================================================================
# Data management
# =============================================================================


@bp.route("/data")
@login_required
def data_management():
    return render_template(
        "data.html",
        asset_count=len(repository.list_assets()),
        category_count=len(repository.list_categories()),
        result=None,
    )


@bp.route("/data/export/<entity>.<fmt>")
@login_required
def data_export(entity: str, fmt: str):
    stamp = datetime.now().strftime("%Y-%m-%d")
    exporters = {
        ("assets", "csv"): lambda: export_assets_csv(repository.list_assets()),
        ("assets", "json"): lambda: export_assets_json(repository.list_assets()),
        ("categories", "csv"): lambda: export_categories_csv(repository.list_categories()),
        ("categories", "json"): lambda: export_categories_json(repository.list_categories()),
    }
    exporter = exporters.get((entity, fmt))
    if exporter is None:
        abort(404)
    mimetype = "application/json" if fmt == "json" else "text/csv"
    logger.info("Exporting %s as %s", entity, fmt)
    return csv_download(exporter(), f"{entity}-{stamp}.{fmt}", mimetype)


@bp.route("/data/template.csv")
@login_required
def data_template():
    return csv_download(import_template_csv(), "asset-import-template.csv")


@bp.route("/data/import", methods=["POST"])
@role_required(*EDITOR_ROLES)
def data_import():
    upload = request.files.get("file")
    if upload is None or not upload.filename:
        flash("Please choose a file to import", "error")
        return redirect(url_for("main.data_management"))

    fmt = Path(upload.filename).suffix.lstrip(".").lower()
    try:
        text = upload.read().decode("utf-8-sig")
        result = import_assets(text, fmt, current_user())
    except UnicodeDecodeError:
        flash("The file is not valid UTF-8 text", "error")
        return redirect(url_for("main.data_management"))
    except SignageError as e:
        flash_error(e)
        return redirect(url_for("main.data_management"))

    if result.imported:
        flash(f"Imported {len(result.imported)} assets", "success")
    if result.errors:
        flash(f"{len(result.errors)} rows were rejected", "error")
    return render_template(
        "data.html",
        asset_count=len(repository.list_assets()),
        category_count=len(repository.list_categories()),
        result=result,
    )


# =============================================================================
# Users and settings
# =============================================================================


@bp.route("/users")
@role_required("admin")
def users():
    search = request.args.get("q", "").strip()
    role = request.args.get("role") if request.args.get("role") in ROLES else None
    status = request.args.get("status") if request.args.get("status") in USER_STATUSES else None
    items = repository.list_users(search=search or None, role=role, status=status)
    all_users = repository.list_users()
    return render_template(
        "users.html",
        users=items,
        search=search,
        role=role,
        status=status,
        roles=ROLES,
        statuses=USER_STATUSES,
        totals={s: sum(1 for u in all_users if u.status == s) for s in USER_STATUSES},
        admin_count=sum(1 for u in all_users if u.role == "admin"),
    )


@bp.route("/users/<user_id>", methods=["POST"])
@role_required("admin")
def user_update(user_id: str):
    try:
        data = validate_form("user_admin", request.form)
        if user_id == current_user().id and (data["role"] != "admin" or data["status"] != "active"):
            raise ValidationError({"role": "You cannot demote or deactivate your own account"})
        user = repository.update_user(user_id, data)
    except SignageError as e:
        flash_error(e)
    else:
        flash(f"Updated {user.email}", "success")
    return redirect(url_for("main.users"))


@bp.route("/users/bulk-status", methods=["POST"])
@role_required("admin")
def users_bulk_status():
    status = request.form.get("status")
    ids = [i for i in request.form.getlist("user_ids") if i != current_user().id]
    if status not in USER_STATUSES or not ids:
        flash("Select users and a status", "error")
        return redirect(url_for("main.users"))
    try:
        count = repository.set_users_status(ids, status)
    except SignageError as e:
        flash_error(e)
    else:
        flash(f"Set {count} users to {status}", "success")
    return redirect(url_for("main.users"))


@bp.route("/settings", methods=["GET", "POST"])
@login_required
def settings():
    user = current_user()
    errors: Dict[str, str] = {}
    if request.method == "POST":
        try:
            data = validate_form("profile", request.form)
            if data["password"] and data["password"] != request.form.get("password_confirm"):
                raise ValidationError({"password_confirm": "Passwords do not match"})
            password_hash = generate_password_hash(data["password"]) if data["password"] else None
            repository.update_profile(user.id, data["full_name"], password_hash)
        except ValidationError as e:
            errors = e.errors
        except SignageError as e:
            flash_error(e)
        else:
            flash("Profile updated", "success")
            return redirect(url_for("main.settings"))
    return render_template(
        "settings.html",
        user=user,
        errors=errors,
        page_size=current_app.config["PAGE_SIZE"],
        database=db.engine.url.render_as_string(hide_password=True),
    ), (400 if errors else 200)


if __name__ == "__main__":
    # Run with debug mode for development
    # Using 5001 to avoid conflict with macOS AirPlay Receiver on 5000
    create_app().run(debug=True, host="0.0.0.0", port=5001)
