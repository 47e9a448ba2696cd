import logging
import secrets
from datetime import timedelta
from typing import Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel, Field
from pymongo.database import Database

import config
from database import create_document, get_db, utcnow
from emails import send_password_changed_email, send_password_reset_email
from schemas import User as UserSchema
from security import (
    LOCK_DURATION, MAX_LOGIN_ATTEMPTS, clear_auth_cookie, get_current_user, hash_password, is_admin,
    public_user, requires_two_factor, set_auth_cookie, token_for_user, validate_email, validate_mobile,
    verify_password, verify_password_policy,
)
from verification import VERIFICATION_TYPES, check_code, issue_code

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

RESET_TOKEN_TTL = timedelta(hours=1)


# Request Models
class CheckUserRequest(BaseModel):
    email: Optional[str] = None
    mobileNumber: Optional[str] = None


class SignupRequest(BaseModel):
    fullName: Optional[str] = Field(None, max_length=100)
    email: Optional[str] = None
    password: Optional[str] = None
    mobileNumber: Optional[str] = None
    age: Optional[int] = Field(None, ge=18, le=100)


class CompleteSignupRequest(SignupRequest):
    verificationCode: Optional[str] = None


class SigninRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class CompleteSigninRequest(SigninRequest):
    verificationCode: Optional[str] = None


class OAuthRequest(BaseModel):
    email: Optional[str] = None
    name: Optional[str] = None
    photoURL: Optional[str] = None
    login: Optional[str] = None


class CompleteOAuthRequest(BaseModel):
    email: Optional[str] = None
    verificationCode: Optional[str] = None


class SendVerificationRequest(BaseModel):
    email: Optional[str] = None
    type: str = "signup"


class VerifyEmailRequest(BaseModel):
    email: Optional[str] = None
    verificationCode: Optional[str] = None
    type: str = "signup"


class ForgotPasswordRequest(BaseModel):
    email: Optional[str] = None


class ResetPasswordRequest(BaseModel):
    token: Optional[str] = None
    newPassword: Optional[str] = None


# Helpers

def _two_factor_type(user: Dict) -> str:
    email = (user.get("email") or "").lower()
    if is_admin(user) or (config.ADMIN_EMAIL and email == config.ADMIN_EMAIL):
        return "admin-signin"
    return "signin"


def _ensure_unique(db: Database, email: str, mobile: Optional[str]) -> None:
    if db["user"].find_one({"email": email}):
        raise HTTPException(status_code=409, detail="Email already in use")
    if mobile and db["user"].find_one({"mobileNumber": mobile}):
        raise HTTPException(status_code=409, detail="Mobile number already in use")


def _check_signin_allowed(user: Optional[Dict]) -> Dict:
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    locked_until = user.get("lockedUntil")
    if locked_until and locked_until > utcnow():
        raise HTTPException(
            status_code=423,
            detail="Account is temporarily locked due to too many failed login attempts. Try again later.",
        )
    if not user.get("isActive", True):
        raise HTTPException(status_code=403, detail="Account is deactivated")
    return user


def _register_failed_login(db: Database, user: Dict) -> None:
    locked_until = user.get("lockedUntil")
    attempts = user.get("failedLoginAttempts", 0)
    if locked_until and locked_until <= utcnow():
        # previous lock has run out, start counting again
        attempts = 0
    attempts += 1
    update: Dict = {"failedLoginAttempts": attempts, "lockedUntil": None}
    if attempts >= MAX_LOGIN_ATTEMPTS:
        update["lockedUntil"] = utcnow() + LOCK_DURATION
        logger.warning("Locking account %s after %d failed logins", user["email"], attempts)
    db["user"].update_one({"_id": user["_id"]}, {"$set": update})


def _verify_credentials(db: Database, user: Dict, password: Optional[str]) -> None:
    if not verify_password(password or "", user.get("password", "")):
        _register_failed_login(db, user)
        raise HTTPException(status_code=401, detail="Wrong credentials")


def _login(db: Database, user: Dict, response: Response, message: str = "Signed in successfully") -> Dict:
    now = utcnow()
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"lastLoginAt": now, "failedLoginAttempts": 0, "lockedUntil": None}},
    )
    user.update({"lastLoginAt": now, "failedLoginAttempts": 0, "lockedUntil": None})
    token = token_for_user(user)
    set_auth_cookie(response, token)
    return {"success": True, "message": message, "token": token, "user": public_user(user)}


def _two_factor_challenge(db: Database, user: Dict) -> Dict:
    type_ = _two_factor_type(user)
    issue_code(db, user["email"], type_)
    return {
        "success": True,
        "requiresTwoFactor": True,
        "isAdmin": type_ == "admin-signin",
        "email": user["email"],
        "message": "Verification code sent to your email",
    }


# Routes

@router.post("/check-user")
def check_user(payload: CheckUserRequest, db: Database = Depends(get_db)):
    if not payload.email and not payload.mobileNumber:
        raise HTTPException(status_code=400, detail="Email or mobile number is required")
    conflicts = []
    if payload.email and db["user"].find_one({"email": payload.email.strip().lower()}):
        conflicts.append("email")
    if payload.mobileNumber and db["user"].find_one({"mobileNumber": payload.mobileNumber.strip()}):
        conflicts.append("mobile")
    return {"success": True, "available": not conflicts, "conflicts": conflicts}


@router.post("/signup")
def signup(payload: SignupRequest, db: Database = Depends(get_db)):
    if not payload.fullName or not payload.email or not payload.password:
        raise HTTPException(status_code=400, detail="All fields are required")
    verify_password_policy(payload.password)
    email = validate_email(payload.email)
    mobile = validate_mobile(payload.mobileNumber)
    _ensure_unique(db, email, mobile)

    issue_code(db, email, "signup")
    return {
        "success": True,
        "message": "Verification code sent to your email",
        "requiresVerification": True,
        "email": email,
    }


@router.post("/complete-signup", status_code=201)
def complete_signup(payload: CompleteSignupRequest, response: Response, db: Database = Depends(get_db)):
    if not payload.fullName or not payload.email or not payload.password or not payload.verificationCode:
        raise HTTPException(status_code=400, detail="All fields are required")
    email = validate_email(payload.email)
    mobile = validate_mobile(payload.mobileNumber)
    password_hash = hash_password(payload.password)

    check_code(db, email, "signup", payload.verificationCode)
    _ensure_unique(db, email, mobile)

    user = create_document(db, "user", UserSchema(
        fullName=payload.fullName.strip(),
        email=email,
        password=password_hash,
        mobileNumber=mobile,
        age=payload.age,
        isEmailVerified=True,
    ))
    logger.info("New user registered: %s", email)
    return _login(db, user, response, "Account created successfully")


@router.post("/signin")
def signin(payload: SigninRequest, response: Response, db: Database = Depends(get_db)):
    if not payload.email or not payload.password:
        raise HTTPException(status_code=400, detail="Email and password are required")
    email = validate_email(payload.email)
    user = _check_signin_allowed(db["user"].find_one({"email": email}))
    _verify_credentials(db, user, payload.password)

    if requires_two_factor(user):
        db["user"].update_one({"_id": user["_id"]}, {"$set": {"failedLoginAttempts": 0, "lockedUntil": None}})
        return _two_factor_challenge(db, user)
    return _login(db, user, response)


@router.post("/complete-signin")
def complete_signin(payload: CompleteSigninRequest, response: Response, db: Database = Depends(get_db)):
    if not payload.email or not payload.password or not payload.verificationCode:
        raise HTTPException(status_code=400, detail="Email, password and verification code are required")
    email = validate_email(payload.email)
    user = _check_signin_allowed(db["user"].find_one({"email": email}))
    _verify_credentials(db, user, payload.password)
    check_code(db, email, _two_factor_type(user), payload.verificationCode)
    return _login(db, user, response)


def _oauth_signin(db: Database, response: Response, payload: OAuthRequest, flag: str) -> Dict:
    if not payload.email:
        raise HTTPException(status_code=400, detail="Email is required")
    email = validate_email(payload.email)
    user = db["user"].find_one({"email": email})

    if user:
        if not user.get("isActive", True):
            raise HTTPException(status_code=403, detail="Account is deactivated")
        if not user.get(flag):
            db["user"].update_one({"_id": user["_id"]}, {"$set": {flag: True, "updatedAt": utcnow()}})
            user[flag] = True
    else:
        name = (payload.name or payload.login or email.split("@")[0]).strip()[:100]
        user = create_document(db, "user", UserSchema(
            fullName=name,
            email=email,
            password=hash_password(secrets.token_hex(16)),
            avatar=payload.photoURL or "",
            isEmailVerified=True,
            **{flag: True},
        ))
        logger.info("New %s account: %s", flag, email)

    if requires_two_factor(user):
        return _two_factor_challenge(db, user)
    return _login(db, user, response)


@router.post("/google")
def google(payload: OAuthRequest, response: Response, db: Database = Depends(get_db)):
    return _oauth_signin(db, response, payload, "isGoogleAccount")


@router.post("/github")
def github(payload: OAuthRequest, response: Response, db: Database = Depends(get_db)):
    return _oauth_signin(db, response, payload, "isGitHubAccount")


@router.post("/complete-oauth")
def complete_oauth(payload: CompleteOAuthRequest, response: Response, db: Database = Depends(get_db)):
    if not payload.email or not payload.verificationCode:
        raise HTTPException(status_code=400, detail="Email and verification code are required")
    email = validate_email(payload.email)
    user = _check_signin_allowed(db["user"].find_one({"email": email}))
    check_code(db, email, _two_factor_type(user), payload.verificationCode)
    return _login(db, user, response)


@router.api_route("/signout", methods=["GET", "POST"])
def signout(response: Response):
    clear_auth_cookie(response)
    return {"success": True, "message": "User has been signed out"}


@router.post("/send-verification")
def send_verification(payload: SendVerificationRequest, db: Database = Depends(get_db)):
    if not payload.email:
        raise HTTPException(status_code=400, detail="Email is required")
    if payload.type not in VERIFICATION_TYPES:
        raise HTTPException(status_code=400, detail="Invalid verification type")
    email = validate_email(payload.email)
    issue_code(db, email, payload.type)
    return {"success": True, "message": "Verification code sent to your email", "email": email}


@router.post("/verify-email")
def verify_email(payload: VerifyEmailRequest, db: Database = Depends(get_db)):
    if not payload.email or not payload.verificationCode:
        raise HTTPException(status_code=400, detail="Email and verification code are required")
    email = validate_email(payload.email)
    check_code(db, email, payload.type, payload.verificationCode)
    return {"success": True, "message": "Email verification successful", "email": email, "type": payload.type}


@router.post("/forgot-password")
def forgot_password(payload: ForgotPasswordRequest, db: Database = Depends(get_db)):
    if not payload.email:
        raise HTTPException(status_code=400, detail="Email is required")
    email = validate_email(payload.email)
    user = db["user"].find_one({"email": email})
    if user:
        token = secrets.token_hex(32)
        db["user"].update_one({"_id": user["_id"]}, {"$set": {
            "passwordResetToken": token,
            "passwordResetExpires": utcnow() + RESET_TOKEN_TTL,
            "updatedAt": utcnow(),
        }})
        send_password_reset_email(email, f"{config.CLIENT_URL}/reset-password/{token}", user.get("fullName", ""))
        logger.info("Password reset requested for %s", email)
    return {
        "success": True,
        "message": "If an account with that email exists, a password reset link has been sent",
    }


@router.post("/reset-password")
def reset_password(payload: ResetPasswordRequest, db: Database = Depends(get_db)):
    if not payload.token or not payload.newPassword:
        raise HTTPException(status_code=400, detail="Token and new password are required")
    verify_password_policy(payload.newPassword)
    user = db["user"].find_one({
        "passwordResetToken": payload.token,
        "passwordResetExpires": {"$gt": utcnow()},
    })
    if not user:
        raise HTTPException(status_code=400, detail="Invalid or expired reset token")

    db["user"].update_one({"_id": user["_id"]}, {
        "$set": {
            "password": hash_password(payload.newPassword),
            "failedLoginAttempts": 0,
            "lockedUntil": None,
            "updatedAt": utcnow(),
        },
        "$unset": {"passwordResetToken": "", "passwordResetExpires": ""},
    })
    send_password_changed_email(user["email"], user.get("fullName", ""))
    return {"success": True, "message": "Password has been reset successfully"}


@router.get("/verify")
@router.get("/verify-token")
def verify_token(current_user=Depends(get_current_user)):
    return {"success": True, "user": public_user(current_user)}
