"""Document request workflow.

A request starts as ``pending`` and is moved by staff along
`DOCUMENT_REQUEST_TRANSITIONS`.  When it becomes ``ready`` a claim stub PDF
is written under ``UPLOAD_FOLDER/claim_stubs`` for the resident to present
at the barangay hall.
"""
from __future__ import annotations

import logging
import os

from flask import current_app
from reportlab.lib.pagesizes import LETTER
from reportlab.lib.units import inch
from reportlab.lib.utils import simpleSplit
from reportlab.pdfgen import canvas

from .constants import DOCUMENT_REQUEST_STATUSES, DOCUMENT_REQUEST_TRANSITIONS
from .errors import InvalidTransition, NotFound, ValidationError
from .extensions import db
from .models import DocumentRequest, DocumentType
from .repositories import ResidentRepository, get_resident_repository
from .time_utils import format_local, isoformat, utcnow

logger = logging.getLogger(__name__)

PURPOSE_MAX_LENGTH = 255


def list_document_types(active_only: bool = True) -> list[DocumentType]:
    query = DocumentType.query
    if active_only:
        query = query.filter_by(is_active=True)
    return query.order_by(DocumentType.name).all()


def create_request(
    resident_id,
    document_type_id,
    purpose: str | None,
    user=None,
    residents: ResidentRepository | None = None,
) -> DocumentRequest:
    """File a new pending request for an active resident."""
    if purpose is not None and not isinstance(purpose, str):
        raise ValidationError("Purpose must be text.", fields={"purpose": "Invalid."})
    purpose = (purpose or "").strip()
    if not purpose:
        raise ValidationError("Purpose is required.", fields={"purpose": "Purpose is required."})
    if len(purpose) > PURPOSE_MAX_LENGTH:
        message = f"Purpose must be {PURPOSE_MAX_LENGTH} characters or less."
        raise ValidationError(message, fields={"purpose": message})

    residents = residents or get_resident_repository()
    resident = residents.find_by_id(resident_id)
    if resident is None or resident.get("is_active") == 0:
        raise NotFound("Resident not found.")

    try:
        document_type = db.session.get(DocumentType, int(document_type_id))
    except (TypeError, ValueError):
        document_type = None
    if document_type is None or not document_type.is_active:
        raise ValidationError("Select a valid document type.", fields={"document_type_id": "Invalid."})

    request = DocumentRequest(
        resident_id=resident["id"],
        resident_name=resident["full_name"],
        document_type=document_type,
        purpose=purpose,
        status="pending",
        requested_by=getattr(user, "id", None),
    )
    db.session.add(request)
    db.session.commit()
    return request


def allowed_transitions(request: DocumentRequest) -> tuple[str, ...]:
    return DOCUMENT_REQUEST_TRANSITIONS.get(request.status, ())


def transition(request: DocumentRequest, new_status: str, user=None, remarks: str | None = None) -> DocumentRequest:
    """Move a request to `new_status`.  Raises InvalidTransition for moves off the graph."""
    if new_status not in DOCUMENT_REQUEST_STATUSES:
        raise ValidationError(f"Unknown status: {new_status}", fields={"status": "Invalid."})
    if new_status not in allowed_transitions(request):
        raise InvalidTransition(f"Cannot change a {request.status} request to {new_status}.")

    if remarks is not None and not isinstance(remarks, str):
        raise ValidationError("Remarks must be text.", fields={"remarks": "Invalid."})
    remarks = (remarks or "").strip() or None
    if new_status == "rejected" and not remarks:
        raise ValidationError("Remarks are required when rejecting a request.", fields={"remarks": "Required."})

    now = utcnow()
    request.status = new_status
    request.processed_by = getattr(user, "id", None)
    request.updated_at = now
    if remarks:
        request.remarks = remarks
    if new_status == "released":
        request.released_at = now
    if new_status == "ready":
        request.file_path = generate_claim_stub_pdf(request)

    db.session.commit()
    logger.info("Document request %s moved to %s.", request.id, new_status)
    return request


def claim_stub_path(request: DocumentRequest) -> str | None:
    """Absolute path of the stored claim stub, if one was generated."""
    if not request.file_path:
        return None
    return os.path.join(current_app.config["UPLOAD_FOLDER"], request.file_path)


def _draw_row(c: canvas.Canvas, y: float, label: str, value) -> float:
    c.setFont("Helvetica-Bold", 10)
    c.drawString(0.9 * inch, y, f"{label}:")
    c.setFont("Helvetica", 10)
    lines = simpleSplit(str(value or "-"), "Helvetica", 10, 5.2 * inch) or ["-"]
    for line in lines:
        c.drawString(2.4 * inch, y, line)
        y -= 0.28 * inch
    return y


def generate_claim_stub_pdf(request: DocumentRequest) -> str:
    """Write the claim stub and return its path relative to ``UPLOAD_FOLDER``."""
    if request.status != "ready":
        raise InvalidTransition("Claim stubs are only issued for requests that are ready.")

    folder = os.path.join(current_app.config["UPLOAD_FOLDER"], "claim_stubs")
    os.makedirs(folder, exist_ok=True)
    filename = f"{request.reference_no}.pdf"
    abs_path = os.path.join(folder, filename)

    tz_name = current_app.config.get("DISPLAY_TIMEZONE", "Asia/Manila")
    document_name = request.document_type.name if request.document_type else "Document"
    fee = request.document_type.fee if request.document_type else 0

    c = canvas.Canvas(abs_path, pagesize=LETTER)
    c.setFont("Helvetica-Bold", 14)
    c.drawCentredString(4.25 * inch, 10.5 * inch, "BARANGAY LIAS")
    c.setFont("Helvetica", 11)
    c.drawCentredString(4.25 * inch, 10.25 * inch, "Document Claim Stub")
    c.line(0.75 * inch, 10.0 * inch, 7.75 * inch, 10.0 * inch)

    y = 9.5 * inch
    y = _draw_row(c, y, "Reference No.", request.reference_no)
    y = _draw_row(c, y, "Resident", request.resident_name)
    y = _draw_row(c, y, "Document", document_name)
    y = _draw_row(c, y, "Purpose", request.purpose)
    y = _draw_row(c, y, "Fee", f"PHP {float(fee or 0):,.2f}")
    y = _draw_row(c, y, "Requested", format_local(request.created_at, tz_name))
    y = _draw_row(c, y, "Ready since", format_local(utcnow(), tz_name))

    y -= 0.4 * inch
    c.setFont("Helvetica-Oblique", 9)
    c.drawString(0.9 * inch, y, "Present this stub and a valid ID at the barangay hall to claim your document.")

    c.line(4.5 * inch, 1.85 * inch, 7.6 * inch, 1.85 * inch)
    c.setFont("Helvetica", 10)
    c.drawString(4.5 * inch, 1.65 * inch, "Released by")
    c.save()

    return os.path.join("claim_stubs", filename)


def get_request_or_404(request_id) -> DocumentRequest:
    try:
        request = db.session.get(DocumentRequest, int(request_id))
    except (TypeError, ValueError):
        request = None
    if request is None:
        raise NotFound("Document request not found.")
    return request


def serialize_request(request: DocumentRequest) -> dict:
    return {
        "id": request.id,
        "reference_no": request.reference_no,
        "resident_id": request.resident_id,
        "resident_name": request.resident_name,
        "document_type_id": request.document_type_id,
        "document_type": request.document_type.name if request.document_type else None,
        "purpose": request.purpose,
        "status": request.status,
        "remarks": request.remarks,
        "has_claim_stub": bool(request.file_path),
        "created_at": isoformat(request.created_at),
        "updated_at": isoformat(request.updated_at),
        "released_at": isoformat(request.released_at),
    }
