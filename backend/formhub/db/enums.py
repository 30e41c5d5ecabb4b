import enum


class UserRole(str, enum.Enum):
    admin = "admin"
    user = "user"


class FieldType(str, enum.Enum):
    text = "text"
    email = "email"
    number = "number"
    textarea = "textarea"
    select = "select"
    checkbox = "checkbox"
    radio = "radio"


class UnknownFieldPolicy(str, enum.Enum):
    """What to do with payload keys that match no field of the form."""
    ignore = "ignore"
    reject = "reject"
    register = "register"
