import os

import pytest

from smartlias.document_requests import (
    allowed_transitions,
    claim_stub_path,
    create_request,
    generate_claim_stub_pdf,
    get_request_or_404,
    serialize_request,
    transition,
)
from smartlias.errors import InvalidTransition, NotFound, ValidationError


@pytest.fixture
def clearance(document_types):
    return document_types["Barangay Clearance"]


@pytest.fixture
def pending(make_resident, clearance):
    resident = make_resident()
    return create_request(resident.id, clearance.id, "Employment requirement")


def test_create_request(pending):
    assert pending.status == "pending"
    assert pending.resident_name == "Juan Dela Cruz"
    assert pending.reference_no.endswith("-00001")
    assert allowed_transitions(pending) == ("processing", "rejected")


def test_create_request_validation(make_resident, clearance, db_session):
    resident = make_resident()
    with pytest.raises(ValidationError):
        create_request(resident.id, clearance.id, "  ")
    with pytest.raises(ValidationError):
        create_request(resident.id, clearance.id, "x" * 256)
    with pytest.raises(ValidationError):
        create_request(resident.id, clearance.id, 42)
    with pytest.raises(ValidationError):
        create_request(resident.id, 9999, "Scholarship")
    with pytest.raises(NotFound):
        create_request(9999, clearance.id, "Scholarship")

    resident.is_active = 0
    db_session.commit()
    with pytest.raises(NotFound):
        create_request(resident.id, clearance.id, "Scholarship")


def test_inactive_document_type_is_rejected(make_resident, clearance, db_session):
    clearance.is_active = False
    db_session.commit()
    with pytest.raises(ValidationError):
        create_request(make_resident().id, clearance.id, "Scholarship")


def test_full_workflow_writes_claim_stub(pending, app):
    transition(pending, "processing")
    with pytest.raises(InvalidTransition):
        generate_claim_stub_pdf(pending)

    transition(pending, "ready")
    path = claim_stub_path(pending)
    assert pending.file_path == os.path.join("claim_stubs", f"{pending.reference_no}.pdf")
    assert path.startswith(app.config["UPLOAD_FOLDER"])
    with open(path, "rb") as f:
        assert f.read(5) == b"%PDF-"

    transition(pending, "released")
    assert pending.released_at is not None
    assert serialize_request(pending)["has_claim_stub"] is True
    with pytest.raises(InvalidTransition):
        transition(pending, "processing")


def test_rejection_needs_remarks(pending):
    with pytest.raises(ValidationError):
        transition(pending, "rejected", remarks=" ")
    with pytest.raises(ValidationError):
        transition(pending, "rejected", remarks=["Incomplete requirements"])
    assert pending.status == "pending"
    transition(pending, "rejected", remarks="Incomplete requirements")
    assert pending.remarks == "Incomplete requirements"
    assert allowed_transitions(pending) == ()


def test_skipping_steps_is_invalid(pending):
    with pytest.raises(InvalidTransition):
        transition(pending, "ready")
    with pytest.raises(ValidationError):
        transition(pending, "archived")


def test_get_request_or_404(pending):
    assert get_request_or_404(str(pending.id)) is pending
    with pytest.raises(NotFound):
        get_request_or_404("nope")
