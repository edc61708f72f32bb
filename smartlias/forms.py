"""
WTForms classes for the SMARTLIAS web pages.

Field-level checks stay light here; the services and repositories apply
the authoritative validation so the HTML pages and the JSON API agree.
"""
from flask_wtf import FlaskForm
from wtforms import (
    BooleanField,
    DateField,
    IntegerField,
    PasswordField,
    SelectField,
    SelectMultipleField,
    StringField,
    SubmitField,
    TextAreaField,
)
from wtforms.validators import DataRequired, EqualTo, Length, NumberRange, Optional, Regexp

from .constants import ANNOUNCEMENT_TYPE_NAMES, CIVIL_STATUSES, GENDER_NAMES, MPIN_LENGTH, SUFFIX_OPTIONS

_MPIN_VALIDATORS = [
    DataRequired(),
    Length(min=MPIN_LENGTH, max=MPIN_LENGTH, message=f"PIN must be exactly {MPIN_LENGTH} digits"),
    Regexp(r"^\d+$", message="PIN must contain only numbers"),
]


class LoginForm(FlaskForm):
    """Username plus 6-digit MPIN."""

    username = StringField("Username", validators=[DataRequired(), Length(max=50)])
    mpin = PasswordField("PIN", validators=_MPIN_VALIDATORS)
    submit = SubmitField("Log In")


class ChangeMpinForm(FlaskForm):
    """Form for users to replace their MPIN.

    Requires the current PIN and a new PIN entered twice.  The `EqualTo`
    validator ensures the two new PIN fields match.
    """

    current_mpin = PasswordField("Current PIN", validators=[DataRequired()])
    new_mpin = PasswordField("New PIN", validators=_MPIN_VALIDATORS)
    confirm_mpin = PasswordField(
        "Confirm New PIN",
        validators=[DataRequired(), EqualTo("new_mpin", message="PINs do not match")],
    )
    submit = SubmitField("Change PIN")


class ResidentForm(FlaskForm):
    first_name = StringField("First Name", validators=[DataRequired(), Length(max=100)])
    middle_name = StringField("Middle Name", validators=[Optional(), Length(max=100)])
    last_name = StringField("Last Name", validators=[DataRequired(), Length(max=100)])
    suffix = SelectField(
        "Suffix",
        choices=[(str(key), label or "None") for key, label in SUFFIX_OPTIONS.items()],
        default="0",
    )
    birth_date = DateField("Birth Date", validators=[Optional()])
    gender = SelectField(
        "Gender",
        choices=[("", "-")] + [(str(key), label) for key, label in GENDER_NAMES.items()],
        validators=[Optional()],
    )
    civil_status = SelectField(
        "Civil Status",
        choices=[("", "-")] + [(status, status) for status in CIVIL_STATUSES],
        validators=[Optional()],
    )
    contact_number = StringField(
        "Mobile Number",
        validators=[
            Optional(),
            Regexp(r"^(\+?63|0)?9\d{9}$", message="Enter a Philippine mobile number, e.g. 09171234567."),
        ],
    )
    # Format check only, no email_validator
    email = StringField(
        "Email",
        validators=[
            Optional(),
            Length(max=255),
            Regexp(r"^[^@\s]+@[^@\s]+\.[^@\s]+$", message="Enter a valid email address."),
        ],
    )
    address = StringField("Address", validators=[Optional(), Length(max=255)])
    purok = IntegerField("Purok", validators=[Optional(), NumberRange(min=1, max=99)])
    religion = StringField("Religion", validators=[Optional(), Length(max=100)])
    occupation = StringField("Occupation", validators=[Optional(), Length(max=100)])
    is_pwd = BooleanField("Person with Disability")
    is_solo_parent = BooleanField("Solo Parent")
    is_indigent = BooleanField("Indigent")
    submit = SubmitField("Save")

    def to_record(self) -> dict:
        """Field values keyed by resident column name."""
        return {
            name: field.data
            for name, field in self._fields.items()
            if name not in ("submit", "csrf_token")
        }


class AnnouncementForm(FlaskForm):
    title = StringField("Title", validators=[DataRequired(), Length(max=255)])
    content = TextAreaField("Content", validators=[DataRequired(), Length(max=1000)])
    type = SelectField(
        "Type",
        choices=[(str(key), label) for key, label in ANNOUNCEMENT_TYPE_NAMES.items()],
        default="1",
    )
    is_urgent = BooleanField("Urgent")
    send_sms = BooleanField("Send as SMS")
    # Choices are filled in by the view (purok numbers come from the data)
    sms_target_groups = SelectMultipleField("SMS Target Groups", choices=[], validate_choice=False)
    submit = SubmitField("Save Draft")

    def to_payload(self) -> dict:
        return {
            "title": self.title.data,
            "content": self.content.data,
            "type": self.type.data,
            "is_urgent": self.is_urgent.data,
            "send_sms": self.send_sms.data,
            "sms_target_groups": self.sms_target_groups.data or [],
        }


class DocumentRequestForm(FlaskForm):
    """Staff filing a request on behalf of a resident, or a resident filing their own."""

    resident_id = SelectField("Resident", coerce=int, validators=[Optional()])
    document_type_id = SelectField("Document Type", coerce=int, validators=[DataRequired()])
    purpose = StringField("Purpose", validators=[DataRequired(), Length(max=255)])
    submit = SubmitField("Submit Request")


class DocumentRequestStatusForm(FlaskForm):
    status = SelectField("New Status", choices=[], validators=[DataRequired()])
    remarks = TextAreaField("Remarks", validators=[Optional(), Length(max=1000)])
    submit = SubmitField("Update")


class DeleteForm(FlaskForm):
    """Tiny form used only to attach CSRF to POST actions."""

    submit = SubmitField("Delete")
