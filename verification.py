"""
Email verification codes.

A code is six digits, lives for ten minutes, tolerates five wrong guesses and
can be used once. Issuing a new code for an (email, type) pair deletes the
previous ones.
"""

import logging
import secrets
from datetime import timedelta

from fastapi import HTTPException
from pymongo.database import Database

from database import create_document, utcnow
from emails import send_verification_email
from schemas import EmailVerification
from terminal_log import display_code

logger = logging.getLogger(__name__)

CODE_TTL = timedelta(minutes=10)
MAX_ATTEMPTS = 5
VERIFICATION_TYPES = ("signup", "signin", "admin-signin", "password-reset")


def generate_code() -> str:
    return str(100000 + secrets.randbelow(900000))


def issue_code(db: Database, email: str, type_: str) -> str:
    if type_ not in VERIFICATION_TYPES:
        raise HTTPException(status_code=400, detail="Invalid verification type")
    email = email.lower()
    code = generate_code()

    db["emailverification"].delete_many({"email": email, "type": type_})
    create_document(db, "emailverification", EmailVerification(
        email=email,
        verificationCode=code,
        type=type_,
        expiresAt=utcnow() + CODE_TTL,
    ))

    send_verification_email(email, code, type_, minutes=int(CODE_TTL.total_seconds() // 60))
    display_code(type_, email, code)
    return code


def check_code(db: Database, email: str, type_: str, code: str) -> None:
    """Consume a code or raise a 400 explaining why it was refused."""
    record = db["emailverification"].find_one({
        "email": email.lower(),
        "type": type_,
        "isUsed": False,
        "expiresAt": {"$gt": utcnow()},
    })
    if not record:
        raise HTTPException(status_code=400, detail="Invalid or expired verification code")

    if record.get("attempts", 0) >= MAX_ATTEMPTS:
        raise HTTPException(status_code=400, detail="Too many verification attempts. Request a new code.")

    if not secrets.compare_digest(str(record["verificationCode"]), str(code or "").strip()):
        db["emailverification"].update_one({"_id": record["_id"]}, {"$inc": {"attempts": 1}})
        logger.info("Wrong %s code for %s (attempt %d)", type_, email, record.get("attempts", 0) + 1)
        raise HTTPException(status_code=400, detail="Incorrect verification code")

    db["emailverification"].update_one({"_id": record["_id"]}, {"$set": {"isUsed": True, "updatedAt": utcnow()}})
