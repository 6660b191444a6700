# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

# backend/bizdesk/routes/auth.py
"""
Authentication API routes

SECURITY FEATURES:
- Password strength validation on registration
- Login throttling to prevent brute-force attacks
- Account lockout after repeated failed attempts
- Session management with token-based auth
"""

from flask import Blueprint, request, jsonify, g

from ..services import auth_service
from ..services import session_service
from ..services import login_throttle_service
from ..decorators import require_auth, bearer_token


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/register")
def register_route():
    """
    Create a business account and sign it in.

    Returns the user and a session token.
    """
    data = request.get_json(silent=True) or {}

    user = auth_service.create_user(
        name=data.get("name"),
        email=data.get("email"),
        password=data.get("password"),
        phone=data.get("phone"),
        business_name=data.get("business_name"),
        business_type=data.get("business_type") or "product_seller",
        business_description=data.get("business_description"),
    )

    session, token = session_service.create_session(
        user_id=user.id,
        user_agent=request.headers.get("User-Agent"),
        ip_address=request.remote_addr,
    )

    return jsonify({
        "user": user.to_dict(),
        "token": token,
        "session": session.to_dict(),
        "message": "Registration successful",
    }), 201


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and create session token.

    Token must be included in Authorization header for protected routes.

    SECURITY:
    - Checks for account lockout before attempting authentication
    - Records failed attempts for throttling
    - Records successful logins for audit trail
    """
    data = request.get_json(silent=True) or {}
    identifier = data.get("email") or data.get("phone") or data.get("identifier")
    password = data.get("password")

    if not all([identifier, password]):
        return jsonify({"error": "email/phone and password required", "code": "validation_error"}), 400

    user_agent = request.headers.get("User-Agent")
    ip_address = request.remote_addr

    is_locked, seconds_remaining = login_throttle_service.is_account_locked(identifier)
    if is_locked:
        minutes_remaining = (seconds_remaining // 60) + 1 if seconds_remaining else 15
        return jsonify({
            "error": "Account temporarily locked due to too many failed login attempts",
            "code": "locked",
            "locked": True,
            "retry_after_seconds": seconds_remaining,
            "retry_after_minutes": minutes_remaining,
        }), 429

    user = auth_service.authenticate(identifier, password)

    if not user:
        failed_count = login_throttle_service.record_failed_attempt(
            identifier=identifier,
            ip_address=ip_address,
            user_agent=user_agent,
            reason="Invalid credentials"
        )

        remaining = login_throttle_service.MAX_FAILED_ATTEMPTS - failed_count

        if remaining <= 0:
            return jsonify({
                "error": "Account locked due to too many failed login attempts",
                "code": "locked",
                "locked": True,
                "retry_after_minutes": int(login_throttle_service.LOCKOUT_DURATION.total_seconds() // 60),
            }), 429
        body = {"error": "Invalid credentials", "code": "unauthorized"}
        if remaining <= 3:
            body["warning"] = f"{remaining} attempts remaining before account lockout"
        return jsonify(body), 401

    login_throttle_service.record_successful_login(
        user_id=user.id,
        identifier=identifier,
        ip_address=ip_address,
        user_agent=user_agent
    )

    session, token = session_service.create_session(
        user_id=user.id,
        user_agent=user_agent,
        ip_address=ip_address
    )

    return jsonify({
        "user": user.to_dict(),
        "token": token,
        "session": session.to_dict(),
        "message": "Login successful"
    }), 200


@auth_bp.get("/lockout-status/<identifier>")
def lockout_status_route(identifier: str):
    """Public: lets a user see whether they are locked out and for how long."""
    return jsonify(login_throttle_service.get_lockout_status(identifier))


@auth_bp.post("/logout")
def logout_route():
    """Revoke session token (logout). Expects Authorization: Bearer <token>."""
    token = bearer_token()
    if not token:
        return jsonify({"error": "Authorization header required", "code": "unauthorized"}), 401

    if not session_service.revoke_session(token, reason="User logout"):
        return jsonify({"error": "Invalid or expired token", "code": "unauthorized"}), 401

    return jsonify({"message": "Logout successful"}), 200


@auth_bp.get("/me")
@require_auth
def me_route():
    return jsonify({
        "user": g.current_user.to_dict(),
        "session": g.session_context.session.to_dict(),
    }), 200
