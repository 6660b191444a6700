# Overview: Service-layer operations for auth; account creation and credential checks.

"""
Authentication Service

WHY: Every sale and stock movement is attributed to a business account.
Uses bcrypt for password hashing and validates password strength.

OWNER SCOPE: A user is its own business account; there is no separate
organization record. Email is globally unique (stored lowercased), phone is
unique when present.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters required
- Must contain uppercase, lowercase, digit, and special char
- Session tokens managed separately (see session_service.py)
"""

import re

import bcrypt
from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, ValidationError
from ..extensions import db
from ..models import User
from ..models.auth import BUSINESS_TYPES, ROLES
from bizdesk.time_utils import utcnow


VALID_BUSINESS_TYPES = BUSINESS_TYPES
VALID_ROLES = ROLES

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""
    code = "weak_password"


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character (!@#$%^&*(),.'":{}|<>)

    Raises PasswordValidationError if requirements not met.
    """
    if not isinstance(password, str) or len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str) -> str:
    """
    Hash password using bcrypt with cost factor 12.

    Password is validated for strength before hashing.
    """
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')  # Store as string in database


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    bcrypt.checkpw() is timing-safe. A malformed stored hash verifies as False.
    """
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def create_user(
    name: str,
    email: str,
    password: str,
    *,
    phone: str | None = None,
    business_name: str | None = None,
    business_type: str = "product_seller",
    business_description: str | None = None,
    role: str = "user",
) -> User:
    """
    Create new business account with bcrypt password hashing.

    Raises:
        ValidationError: Missing name, malformed email, unknown business type
        PasswordValidationError: If password doesn't meet requirements
        ConflictError: Email or phone already registered
    """
    name = (name or "").strip()
    if not name:
        raise ValidationError("name is required")

    email = normalize_email(email)
    if not _EMAIL_RE.match(email):
        raise ValidationError("Please provide a valid email")

    if business_type not in VALID_BUSINESS_TYPES:
        raise ValidationError(f"business_type must be one of {list(VALID_BUSINESS_TYPES)}")
    if role not in VALID_ROLES:
        raise ValidationError(f"role must be one of {list(VALID_ROLES)}")

    phone = phone.strip() if phone else None

    existing = db.session.query(User).filter(
        db.or_(User.email == email, User.phone == phone) if phone else User.email == email
    ).first()
    if existing:
        raise ConflictError("User already exists with this email or phone")

    # Hash password with bcrypt (validates strength automatically)
    password_hash = hash_password(password)

    user = User(
        name=name,
        email=email,
        phone=phone,
        password_hash=password_hash,
        business_name=business_name,
        business_type=business_type,
        business_description=business_description,
        role=role,
    )

    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("User already exists with this email or phone")
    return user


def find_user_by_identifier(identifier: str) -> User | None:
    """Look up an account by email (case-insensitive) or phone."""
    identifier = (identifier or "").strip()
    return db.session.query(User).filter(
        db.or_(User.email == identifier.lower(), User.phone == identifier)
    ).first()


def authenticate(identifier: str, password: str) -> User | None:
    """
    Authenticate user with email or phone and password.

    Returns User if credentials valid and the account is active, None otherwise.
    Updates last_login_at timestamp on successful authentication.
    """
    user = find_user_by_identifier(identifier)

    if not user or not user.is_active:
        return None

    if verify_password(password, user.password_hash):
        user.last_login_at = utcnow()
        db.session.commit()
        return user

    return None
