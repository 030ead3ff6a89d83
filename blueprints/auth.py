from flask import jsonify, Blueprint, current_app
from flask_login import login_user, logout_user, current_user, login_required

from extensions import db
from models import User
from utils import validate_email, validate_phone, generate_referral_code
from commission.network import ReferralNetworkHelper
from blueprints.helpers import json_body


bp = Blueprint("auth", __name__, url_prefix="")


#===========================================================================
#      SIGN UP ROUTE.
#==============================================================================
@bp.route("/api/signup", methods=["POST"])
def signup():
    """
    Create a new user with a fresh referral code, linked to the sponsor whose
    code was supplied (if any).
    """
    data = json_body()

    name = (data.get("name") or "").strip()
    email = (data.get("email") or "").strip().lower()
    phone = (data.get("phone") or "").strip() or None
    password = data.get("password") or ""
    referral_code = (data.get("referralCode") or "").strip().upper()

    # -----------------------------------------
    #  BASIC VALIDATION
    # -----------------------------------------
    if not name or not email or not password:
        return jsonify({"error": "Name, email and password are required"}), 400
    if not validate_email(email):
        return jsonify({"error": "Invalid email address"}), 400
    if phone and not validate_phone(phone):
        return jsonify({"error": "Invalid phone number"}), 400
    if len(password) < 6:
        return jsonify({"error": "Password must be at least 6 characters"}), 400

    if User.query.filter_by(email=email).first():
        return jsonify({"error": "Email already registered"}), 400

    # -----------------------------------------
    #  HANDLE REFERRAL CODE
    # -----------------------------------------
    sponsor = None
    if referral_code:
        sponsor = User.query.filter_by(referral_code=referral_code).first()
        if sponsor is None:
            return jsonify({"error": "Invalid referral code"}), 400

    new_user = User(
        name=name,
        email=email,
        phone=phone,
        referral_code=generate_referral_code(
            lambda code: User.query.filter_by(referral_code=code).first() is not None
        ),
        referred_by=sponsor.referral_code if sponsor else None,
    )
    new_user.set_password(password)

    if sponsor is not None and ReferralNetworkHelper.would_create_cycle(new_user, sponsor):
        current_app.logger.warning(f"[SIGNUP] Refused sponsor {sponsor.id}: chain above it is cyclic")
        return jsonify({"error": "Invalid referral code"}), 400

    db.session.add(new_user)
    db.session.commit()
    current_app.logger.info(
        f"[SIGNUP] user {new_user.id} registered with code {new_user.referral_code}, "
        f"sponsor {sponsor.id if sponsor else None}"
    )

    return jsonify({
        "status": "success",
        "message": "Signup successful",
        "user": new_user.to_dict(),
    }), 201


# --------------------------------------------------
#      Login / Logout
# --------------------------------------------------
@bp.route("/api/login", methods=["POST"])
def login():
    """
    Expected JSON:
    {
        "email": "",
        "password": ""
    }
    """
    data = json_body()
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""

    if not email or not password:
        return jsonify({"error": "Email and password are required"}), 400

    user = User.query.filter_by(email=email).first()
    if not user or not user.check_password(password):
        return jsonify({"error": "Invalid credentials"}), 401

    if not login_user(user):
        return jsonify({"error": "Account is inactive"}), 403

    return jsonify({"message": "Login successful", "user": user.to_dict()}), 200


@bp.route("/api/logout", methods=["POST"])
@login_required
def logout():
    logout_user()
    return jsonify({"message": "Logged out successfully"}), 200


@bp.route("/session", methods=["GET"])
def check_session():
    """Returns current logged-in user data if authenticated"""
    if not current_user.is_authenticated:
        return jsonify({"authenticated": False}), 200
    return jsonify({"authenticated": True, "user": current_user.to_dict()}), 200
