"""Shared constants: roles, user-facing messages, lookup tables."""

ROLE_RESIDENT = 1
ROLE_ADMIN = 2

ROLE_NAMES = {
    ROLE_RESIDENT: "Resident",
    ROLE_ADMIN: "Admin",
}

ROLE_STRINGS = {
    ROLE_RESIDENT: "resident",
    ROLE_ADMIN: "admin",
}

STRING_TO_ROLE = {value: key for key, value in ROLE_STRINGS.items()}

PASSWORD_NOT_CHANGED = 0
PASSWORD_CHANGED = 1

MPIN_LENGTH = 6
USERNAME_MIN_LENGTH = 3
USERNAME_MAX_LENGTH = 50


class AuthMessages:
    USERNAME_REQUIRED = "Username is required"
    USERNAME_TOO_SHORT = f"Username must be at least {USERNAME_MIN_LENGTH} characters"
    USERNAME_TOO_LONG = f"Username must be at most {USERNAME_MAX_LENGTH} characters"
    USERNAME_NOT_FOUND = "Username is not registered. Please visit Barangay Office."
    USERNAME_INVALID_FORMAT = "Username can only contain letters, numbers, dots, hyphens, and underscores"

    PIN_REQUIRED = "PIN is required"
    PIN_INVALID_LENGTH = "PIN must be exactly 6 digits"
    PIN_INVALID_FORMAT = "PIN must contain only numbers"
    PIN_CURRENT_INCORRECT = "Current PIN is incorrect"
    PIN_MISMATCH = "PINs do not match"
    PIN_SAME_AS_CURRENT = "New PIN must be different from the current PIN"
    PIN_CHANGE_SUCCESS = "PIN changed successfully!"
    PIN_CHANGE_REQUIRED = "PIN change required."

    LOGIN_SUCCESS = "Welcome!"
    INVALID_CREDENTIALS = "Invalid username or PIN"
    ACCOUNT_LOCKED = "Account is temporarily locked due to too many failed attempts. Try again in {minutes} minute(s)."

    UNAUTHORIZED = "Access denied. Please log in."
    FORBIDDEN = "You do not have permission to perform this action."
    SESSION_EXPIRED = "Your session has expired. Please log in again."
    TOO_MANY_REQUESTS = "Too many requests. Please try again later."
    MISSING_REQUIRED_FIELDS = "Missing required fields"


HTTP_STATUS_MESSAGES = {
    400: "Bad Request",
    401: "Unauthorized",
    403: "Forbidden",
    404: "Not Found",
    405: "Method Not Allowed",
    422: "Validation Failed",
    423: "Locked",
    429: "Too Many Requests",
    500: "Internal Server Error",
}

SUFFIX_OPTIONS = {
    0: "",
    1: "Jr.",
    2: "Sr.",
    3: "II",
    4: "III",
    5: "IV",
    6: "V",
}

GENDER_MALE = 1
GENDER_FEMALE = 2
GENDER_NAMES = {GENDER_MALE: "Male", GENDER_FEMALE: "Female"}

CIVIL_STATUSES = ("Single", "Married", "Widowed", "Separated", "Annulled")

SENIOR_CITIZEN_AGE = 60

ANNOUNCEMENT_TYPE_NAMES = {
    1: "General",
    2: "Health",
    3: "Activities",
    4: "Assistance",
    5: "Advisory",
}

SPECIAL_CATEGORY_LABELS = {
    "PWD": "PWD",
    "SENIOR_CITIZEN": "Senior Citizens",
    "SOLO_PARENT": "Solo Parents",
    "INDIGENT": "Indigent Families",
}

DOCUMENT_REQUEST_STATUSES = ("pending", "processing", "ready", "released", "rejected")

# Allowed forward moves for a document request
DOCUMENT_REQUEST_TRANSITIONS = {
    "pending": ("processing", "rejected"),
    "processing": ("ready", "rejected"),
    "ready": ("released",),
    "released": (),
    "rejected": (),
}

DEFAULT_DOCUMENT_TYPES = [
    ("Barangay Clearance", "Certificate of residency and good moral character", 50),
    ("Business Permit", "Permit for business operations within the barangay", 300),
    ("Certificate of Indigency", "Certification for financial assistance programs", 0),
    ("Certificate of Residency", "Proof of residence within the barangay", 50),
    ("Building Permit", "Permit for construction and renovation projects", 500),
    ("Complaint Report", "File complaints and incident reports", 0),
]
