"""Verification code banners for the server console, so codes are usable without SMTP."""

import logging

logger = logging.getLogger("basha_lagbe.codes")

RULE = "=" * 80


def display_verification_code(type_: str, email: str, code: str) -> None:
    logger.info("\n%s\nVERIFICATION CODE GENERATED\n%s\nType: %s\nEmail: %s\nCode: %s\n"
                "This code will expire in 10 minutes\n%s", RULE, RULE, type_.upper(), email, code, RULE)


def display_admin_login(email: str, code: str) -> None:
    logger.warning("\n%s\nADMIN LOGIN VERIFICATION\nAdmin Email: %s\nVerification Code: %s\n%s",
                   RULE, email, code, RULE)


def display_user_signup(email: str, code: str) -> None:
    logger.info("\n%s\nUSER SIGNUP VERIFICATION\nUser Email: %s\nVerification Code: %s\n%s",
                RULE, email, code, RULE)


def display_code(type_: str, email: str, code: str) -> None:
    if type_ == "admin-signin":
        display_admin_login(email, code)
    elif type_ == "signup":
        display_user_signup(email, code)
    else:
        display_verification_code(type_, email, code)
