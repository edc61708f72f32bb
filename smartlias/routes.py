"""Main routes.

This blueprint covers the day-to-day pages:

- Public home page with document services and published announcements
- Dashboards for staff and residents
- Residents: list, add, edit, view, deactivate, export
- Announcements: list, create, edit, publish, delete
- Document requests: staff queue and the resident's own requests

For admin-only account tools and the audit log, see `admin.py`.
"""

from __future__ import annotations

import csv
import io
import math
import os

from flask import Blueprint, abort, current_app, flash, redirect, render_template, request, send_file, url_for
from flask_login import current_user, login_required

from .announcements import (
    create_announcement,
    delete_announcement,
    describe_target_group,
    publish_announcement,
    sms_status,
    update_announcement,
)
from .constants import ROLE_ADMIN, SPECIAL_CATEGORY_LABELS
from .document_requests import (
    allowed_transitions,
    claim_stub_path,
    create_request,
    get_request_or_404,
    list_document_types,
    transition,
)
from .errors import SmartliasError, ValidationError
from .extensions import db
from .forms import AnnouncementForm, DeleteForm, DocumentRequestForm, DocumentRequestStatusForm, ResidentForm
from .helpers import log_action, roles_required
from .models import Announcement, DocumentRequest, TransactionLog
from .repositories import get_resident_repository
from .services import create_resident_account

EXPORT_COLUMNS = [
    ("ID", "formatted_id"),
    ("Last Name", "last_name"),
    ("First Name", "first_name"),
    ("Middle Name", "middle_name"),
    ("Suffix", "suffix_label"),
    ("Birth Date", "birth_date"),
    ("Age", "age"),
    ("Gender", "gender_name"),
    ("Civil Status", "civil_status"),
    ("Contact Number", "contact_number"),
    ("Email", "email"),
    ("Address", "address"),
    ("Purok", "purok"),
    ("Special Categories", "special_categories"),
]


class ListPage:
    """Pagination info for lists that don't come from `db.paginate`."""

    def __init__(self, items, page: int, per_page: int, total: int):
        self.items = items
        self.page = page
        self.per_page = per_page
        self.total = total
        self.pages = max(1, math.ceil(total / per_page)) if per_page else 1

    @property
    def has_prev(self) -> bool:
        return self.page > 1

    @property
    def has_next(self) -> bool:
        return self.page < self.pages

    @property
    def prev_num(self) -> int:
        return self.page - 1

    @property
    def next_num(self) -> int:
        return self.page + 1


def _per_page() -> int:
    return int(current_app.config.get("DEFAULT_PAGE_SIZE", 20))


def _sms_target_choices(residents) -> list[tuple[str, str]]:
    puroks = sorted({r["purok"] for r in residents.list_active() if r.get("purok")})
    tags = ["all"] + [f"special_category:{key}" for key in SPECIAL_CATEGORY_LABELS] + [f"purok:{p}" for p in puroks]
    return [(tag, describe_target_group(tag)) for tag in tags]


main_bp = Blueprint("main", __name__)


@main_bp.route("/home")
def home():
    """Public landing page."""
    announcements = (
        Announcement.query.filter(Announcement.published_at.isnot(None))
        .order_by(Announcement.published_at.desc())
        .limit(5)
        .all()
    )
    return render_template("home.html", document_types=list_document_types(), announcements=announcements)


@main_bp.route("/")
@login_required
def index():
    """Dashboard: staff overview or the resident's own summary."""
    if current_user.role == ROLE_ADMIN:
        stats = get_resident_repository().get_stats()
        pending_requests = DocumentRequest.query.filter(DocumentRequest.status.in_(("pending", "processing"))).count()
        draft_announcements = Announcement.query.filter(Announcement.published_at.is_(None)).count()
        recent_logs = TransactionLog.query.order_by(TransactionLog.timestamp.desc()).limit(8).all()
        return render_template(
            "index.html",
            stats=stats,
            pending_requests=pending_requests,
            draft_announcements=draft_announcements,
            recent_logs=recent_logs,
        )

    resident = get_resident_repository().find_by_user_id(current_user.id)
    my_requests = []
    if resident:
        my_requests = (
            DocumentRequest.query.filter_by(resident_id=resident["id"])
            .order_by(DocumentRequest.created_at.desc())
            .limit(5)
            .all()
        )
    announcements = (
        Announcement.query.filter(Announcement.published_at.isnot(None))
        .order_by(Announcement.published_at.desc())
        .limit(5)
        .all()
    )
    return render_template(
        "resident_dashboard.html",
        resident=resident,
        my_requests=my_requests,
        announcements=announcements,
    )


# ------------------------------
# Residents
# ------------------------------


@main_bp.route("/residents")
@login_required
@roles_required("admin")
def list_residents():
    q = (request.args.get("q") or "").strip()
    page = request.args.get("page", 1, type=int)
    result = get_resident_repository().find_all(q, page, _per_page())
    pagination = ListPage(result["residents"], result["page"], result["limit"], result["total"])
    return render_template(
        "residents.html",
        residents=pagination.items,
        q=q,
        pagination=pagination,
        delete_form=DeleteForm(),
    )


@main_bp.route("/residents/add", methods=["GET", "POST"])
@login_required
@roles_required("admin")
def add_resident():
    form = ResidentForm()
    if form.validate_on_submit():
        try:
            resident = get_resident_repository().create(form.to_record())
        except ValidationError as exc:
            for name, message in exc.fields.items():
                if name in form:
                    form[name].errors.append(message)
            flash(exc.message, "danger")
            return render_template("resident_form.html", form=form, title="Add Resident")
        log_action(
            f"Created resident #{resident['id']} ({resident['last_name']}, {resident['first_name']})",
            entity_type="resident",
            entity_id=resident["id"],
        )
        flash("Resident added successfully!", "success")
        return redirect(url_for("main.resident_profile", resident_id=resident["id"]))
    return render_template("resident_form.html", form=form, title="Add Resident")


@main_bp.route("/residents/<int:resident_id>/edit", methods=["GET", "POST"])
@login_required
@roles_required("admin")
def edit_resident(resident_id: int):
    residents = get_resident_repository()
    resident = residents.find_by_id(resident_id)
    if resident is None:
        abort(404)

    form = ResidentForm(data=None if request.method == "POST" else {
        **resident,
        "suffix": str(resident.get("suffix") or 0),
        "gender": str(resident.get("gender") or ""),
        "civil_status": resident.get("civil_status") or "",
    })
    if form.validate_on_submit():
        try:
            residents.update(resident_id, form.to_record())
        except ValidationError as exc:
            for name, message in exc.fields.items():
                if name in form:
                    form[name].errors.append(message)
            flash(exc.message, "danger")
            return render_template("resident_form.html", form=form, title="Edit Resident", resident=resident)
        log_action(f"Updated resident #{resident_id}", entity_type="resident", entity_id=resident_id)
        flash("Resident updated.", "success")
        return redirect(url_for("main.resident_profile", resident_id=resident_id))
    return render_template("resident_form.html", form=form, title="Edit Resident", resident=resident)


@main_bp.route("/residents/<int:resident_id>")
@login_required
@roles_required("admin")
def resident_profile(resident_id: int):
    resident = get_resident_repository().find_by_id(resident_id)
    if resident is None:
        abort(404)
    requests_ = (
        DocumentRequest.query.filter_by(resident_id=resident_id)
        .order_by(DocumentRequest.created_at.desc())
        .all()
    )
    return render_template(
        "resident_detail.html",
        resident=resident,
        requests=requests_,
        delete_form=DeleteForm(),
    )


@main_bp.route("/residents/<int:resident_id>/delete", methods=["POST"])
@login_required
@roles_required("admin")
def delete_resident(resident_id: int):
    residents = get_resident_repository()
    resident = residents.find_by_id(resident_id)
    if resident is None or not residents.delete(resident_id):
        abort(404)
    log_action(
        f"Deactivated resident #{resident_id} ({resident['last_name']}, {resident['first_name']})",
        entity_type="resident",
        entity_id=resident_id,
    )
    flash("Resident deactivated.", "info")
    return redirect(url_for("main.list_residents"))


@main_bp.route("/residents/<int:resident_id>/account", methods=["POST"])
@login_required
@roles_required("admin")
def create_account(resident_id: int):
    residents = get_resident_repository()
    resident = residents.find_by_id(resident_id)
    if resident is None:
        abort(404)
    try:
        account, _ = create_resident_account(resident, residents.users, residents)
    except ValidationError as exc:
        flash(exc.message, "danger")
    else:
        log_action(
            f"Created account '{account.username}' for resident #{resident_id}",
            entity_type="user",
            entity_id=account.id,
        )
        flash(
            f"Account '{account.username}' created. The initial PIN is the birth date as MMDDYY "
            "and must be changed on first login.",
            "success",
        )
    return redirect(url_for("main.resident_profile", resident_id=resident_id))


@main_bp.route("/residents/export/<string:fmt>")
@login_required
@roles_required("admin")
def export_residents(fmt: str):
    """Export active residents to CSV/XLSX."""
    fmt = (fmt or "").lower()
    if fmt not in ("csv", "xlsx"):
        abort(404)

    headers = [label for label, _ in EXPORT_COLUMNS]
    rows = []
    for resident in get_resident_repository().list_active():
        row = []
        for _, key in EXPORT_COLUMNS:
            value = resident.get(key)
            if key == "special_categories":
                value = ", ".join(value or [])
            elif key == "birth_date" and value:
                value = value.isoformat()
            row.append("" if value is None else value)
        rows.append(row)
    rows.sort(key=lambda r: (str(r[1]).lower(), str(r[2]).lower()))

    if fmt == "csv":
        output = io.StringIO()
        writer = csv.writer(output)
        writer.writerow(headers)
        writer.writerows(rows)
        data = io.BytesIO(output.getvalue().encode("utf-8"))
        log_action("Exported residents (CSV)", entity_type="resident", meta={"rows": len(rows)})
        return send_file(data, mimetype="text/csv", as_attachment=True, download_name="residents.csv")

    from openpyxl import Workbook

    wb = Workbook()
    ws = wb.active
    ws.title = "Residents"
    ws.append(headers)
    for row in rows:
        ws.append(row)
    bio = io.BytesIO()
    wb.save(bio)
    bio.seek(0)
    log_action("Exported residents (XLSX)", entity_type="resident", meta={"rows": len(rows)})
    return send_file(
        bio,
        mimetype="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        as_attachment=True,
        download_name="residents.xlsx",
    )


# ------------------------------
# Announcements
# ------------------------------


@main_bp.route("/announcements")
@login_required
def list_announcements():
    status = request.args.get("status", "")
    query = Announcement.query
    if current_user.role != ROLE_ADMIN or status == "published":
        query = query.filter(Announcement.published_at.isnot(None))
    elif status == "draft":
        query = query.filter(Announcement.published_at.is_(None))
    page = request.args.get("page", 1, type=int)
    pagination = db.paginate(
        query.order_by(Announcement.created_at.desc(), Announcement.id.desc()),
        page=page,
        per_page=_per_page(),
        error_out=False,
    )
    return render_template(
        "announcements.html",
        announcements=pagination.items,
        pagination=pagination,
        status=status,
    )


@main_bp.route("/announcements/new", methods=["GET", "POST"])
@login_required
@roles_required("admin")
def add_announcement():
    form = AnnouncementForm()
    form.sms_target_groups.choices = _sms_target_choices(get_resident_repository())
    if form.validate_on_submit():
        try:
            announcement = create_announcement(form.to_payload(), current_user.id)
        except ValidationError as exc:
            flash(exc.message, "danger")
            return render_template("announcement_form.html", form=form, title="New Announcement")
        log_action(
            f"Created announcement '{announcement.title}'",
            entity_type="announcement",
            entity_id=announcement.id,
        )
        flash("Announcement saved as draft.", "success")
        return redirect(url_for("main.announcement_detail", announcement_id=announcement.id))
    return render_template("announcement_form.html", form=form, title="New Announcement")


@main_bp.route("/announcements/<int:announcement_id>")
@login_required
def announcement_detail(announcement_id: int):
    announcement = db.get_or_404(Announcement, announcement_id)
    if current_user.role != ROLE_ADMIN and not announcement.published_at:
        abort(404)
    status = sms_status(announcement) if current_user.role == ROLE_ADMIN else None
    return render_template(
        "announcement_detail.html",
        announcement=announcement,
        sms=status,
        target_labels=[describe_target_group(t) for t in announcement.sms_target_groups],
        action_form=DeleteForm(),
    )


@main_bp.route("/announcements/<int:announcement_id>/edit", methods=["GET", "POST"])
@login_required
@roles_required("admin")
def edit_announcement(announcement_id: int):
    announcement = db.get_or_404(Announcement, announcement_id)
    if announcement.published_at:
        flash("Published announcements can no longer be edited.", "warning")
        return redirect(url_for("main.announcement_detail", announcement_id=announcement_id))

    form = AnnouncementForm(obj=announcement if request.method == "GET" else None)
    form.sms_target_groups.choices = _sms_target_choices(get_resident_repository())
    if request.method == "GET":
        form.type.data = str(announcement.type)
        form.sms_target_groups.data = announcement.sms_target_groups
        form.send_sms.data = bool(announcement.sms_target_groups)
    if form.validate_on_submit():
        try:
            update_announcement(announcement, form.to_payload())
        except SmartliasError as exc:
            flash(exc.message, "danger")
            return render_template("announcement_form.html", form=form, title="Edit Announcement")
        log_action(
            f"Updated announcement '{announcement.title}'",
            entity_type="announcement",
            entity_id=announcement.id,
        )
        flash("Announcement updated.", "success")
        return redirect(url_for("main.announcement_detail", announcement_id=announcement_id))
    return render_template("announcement_form.html", form=form, title="Edit Announcement")


@main_bp.route("/announcements/<int:announcement_id>/publish", methods=["POST"])
@login_required
@roles_required("admin")
def publish(announcement_id: int):
    announcement = db.get_or_404(Announcement, announcement_id)
    try:
        status = publish_announcement(announcement, current_user.id)
    except SmartliasError as exc:
        flash(exc.message, "warning")
    else:
        log_action(
            f"Published announcement '{announcement.title}'",
            entity_type="announcement",
            entity_id=announcement.id,
            meta=status,
        )
        if status["total_recipients"]:
            flash(
                f"Announcement published. SMS sent to {status['successful_sends']} of "
                f"{status['total_recipients']} recipient(s).",
                "success" if not status["failed_sends"] else "warning",
            )
        else:
            flash("Announcement published.", "success")
    return redirect(url_for("main.announcement_detail", announcement_id=announcement_id))


@main_bp.route("/announcements/<int:announcement_id>/delete", methods=["POST"])
@login_required
@roles_required("admin")
def remove_announcement(announcement_id: int):
    announcement = db.get_or_404(Announcement, announcement_id)
    title = announcement.title
    delete_announcement(announcement)
    log_action(f"Deleted announcement '{title}'", entity_type="announcement", entity_id=announcement_id)
    flash("Announcement deleted.", "info")
    return redirect(url_for("main.list_announcements"))


# ------------------------------
# Document requests
# ------------------------------


@main_bp.route("/requests")
@login_required
@roles_required("admin")
def list_requests():
    status = request.args.get("status", "")
    query = DocumentRequest.query
    if status:
        query = query.filter(DocumentRequest.status == status)
    page = request.args.get("page", 1, type=int)
    pagination = db.paginate(
        query.order_by(DocumentRequest.created_at.desc(), DocumentRequest.id.desc()),
        page=page,
        per_page=_per_page(),
        error_out=False,
    )
    return render_template(
        "document_requests.html",
        requests=pagination.items,
        pagination=pagination,
        status=status,
    )


@main_bp.route("/my-requests")
@login_required
def my_requests():
    resident = get_resident_repository().find_by_user_id(current_user.id)
    items = []
    if resident:
        items = (
            DocumentRequest.query.filter_by(resident_id=resident["id"])
            .order_by(DocumentRequest.created_at.desc())
            .all()
        )
    return render_template("my_requests.html", resident=resident, requests=items)


@main_bp.route("/requests/new", methods=["GET", "POST"])
@login_required
def new_request():
    residents = get_resident_repository()
    is_admin = current_user.role == ROLE_ADMIN
    own = None if is_admin else residents.find_by_user_id(current_user.id)
    if not is_admin and own is None:
        flash("Your account is not linked to a resident record. Please visit the barangay office.", "warning")
        return redirect(url_for("main.index"))

    form = DocumentRequestForm()
    form.document_type_id.choices = [(t.id, t.name) for t in list_document_types()]
    if is_admin:
        form.resident_id.choices = [(r["id"], f"{r['last_name']}, {r['first_name']}") for r in residents.list_active()]
    else:
        form.resident_id.choices = [(own["id"], own["full_name"])]
        form.resident_id.data = own["id"]

    if form.validate_on_submit():
        resident_id = form.resident_id.data if is_admin else own["id"]
        try:
            doc_request = create_request(resident_id, form.document_type_id.data, form.purpose.data, current_user, residents)
        except SmartliasError as exc:
            flash(exc.message, "danger")
        else:
            log_action(
                f"Filed {doc_request.document_type.name} request {doc_request.reference_no}",
                entity_type="document_request",
                entity_id=doc_request.id,
            )
            flash(f"Request {doc_request.reference_no} submitted.", "success")
            return redirect(url_for("main.list_requests" if is_admin else "main.my_requests"))
    return render_template("document_request_form.html", form=form, is_admin=is_admin)


@main_bp.route("/requests/<int:request_id>", methods=["GET", "POST"])
@login_required
@roles_required("admin")
def request_detail(request_id: int):
    doc_request = get_request_or_404(request_id)
    form = DocumentRequestStatusForm()
    form.status.choices = [(s, s.capitalize()) for s in allowed_transitions(doc_request)]
    if form.validate_on_submit():
        previous = doc_request.status
        try:
            transition(doc_request, form.status.data, current_user, form.remarks.data)
        except SmartliasError as exc:
            flash(exc.message, "danger")
        else:
            log_action(
                f"Request {doc_request.reference_no}: {previous} -> {doc_request.status}",
                entity_type="document_request",
                entity_id=doc_request.id,
            )
            flash(f"Request {doc_request.reference_no} is now {doc_request.status}.", "success")
            return redirect(url_for("main.request_detail", request_id=request_id))
    return render_template("document_request_detail.html", doc_request=doc_request, form=form)


@main_bp.route("/requests/<int:request_id>/claim-stub")
@login_required
def download_claim_stub(request_id: int):
    doc_request = get_request_or_404(request_id)
    if current_user.role != ROLE_ADMIN:
        own = get_resident_repository().find_by_user_id(current_user.id)
        if own is None or own["id"] != doc_request.resident_id:
            abort(403)
    path = claim_stub_path(doc_request)
    if not path or not os.path.exists(path):
        flash("No claim stub is available for this request.", "warning")
        return redirect(request.referrer or url_for("main.index"))
    return send_file(
        path,
        mimetype="application/pdf",
        as_attachment=True,
        download_name=f"{doc_request.reference_no}.pdf",
    )
