"""Demo records used to seed the JSON mock files and `flask seed-demo`."""

from .constants import PASSWORD_CHANGED, ROLE_ADMIN, ROLE_RESIDENT

# (username, first_name, last_name, mpin, role)
DEMO_USERS = [
    ("juan.delacruz", "Juan", "Dela Cruz", "031590", ROLE_RESIDENT),
    ("maria.santos", "Maria", "Santos", "120885", ROLE_RESIDENT),
    ("admin.staff", "Admin", "Staff", "010180", ROLE_ADMIN),
    ("jose.garcia", "Jose", "Garcia", "067520", ROLE_RESIDENT),
    ("ana.reyes", "Ana", "Reyes", "091285", ROLE_RESIDENT),
]

DEMO_RESIDENTS = [
    {
        "username": "juan.delacruz",
        "last_name": "Dela Cruz",
        "first_name": "Juan",
        "middle_name": "Santos",
        "birth_date": "1990-03-15",
        "gender": 1,
        "civil_status": "Married",
        "contact_number": "09171234567",
        "email": "juan.delacruz@example.com",
        "address": "123 Mabini St.",
        "purok": 1,
        "occupation": "Driver",
    },
    {
        "username": "maria.santos",
        "last_name": "Santos",
        "first_name": "Maria",
        "birth_date": "1985-12-08",
        "gender": 2,
        "civil_status": "Single",
        "contact_number": "09181234567",
        "address": "45 Rizal Ave.",
        "purok": 2,
        "occupation": "Teacher",
        "is_solo_parent": True,
    },
    {
        "username": "jose.garcia",
        "last_name": "Garcia",
        "first_name": "Jose",
        "birth_date": "1952-06-20",
        "gender": 1,
        "civil_status": "Widowed",
        "contact_number": "09191234567",
        "address": "8 Bonifacio St.",
        "purok": 3,
        "is_pwd": True,
    },
    {
        "username": "ana.reyes",
        "last_name": "Reyes",
        "first_name": "Ana",
        "birth_date": "1985-09-12",
        "gender": 2,
        "civil_status": "Married",
        "contact_number": "09201234567",
        "address": "17 Luna St.",
        "purok": 1,
        "is_indigent": True,
    },
    {
        "username": None,
        "last_name": "Mendoza",
        "first_name": "Pedro",
        "birth_date": "1978-01-30",
        "gender": 1,
        "civil_status": "Married",
        "contact_number": None,
        "address": "2 Quezon Blvd.",
        "purok": 2,
        "occupation": "Farmer",
    },
]

DEMO_PASSWORD_STATUS = PASSWORD_CHANGED
