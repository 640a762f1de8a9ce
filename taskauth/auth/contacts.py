"""
TASKAUTH - Contacts

Détection, normalisation et validation des contacts (email / téléphone).
Les types "primary email" et "primary mobile" se ramènent aux types de
base email / mobile.
"""

import re
from typing import Optional, Tuple


EMAIL = "email"
MOBILE = "mobile"
PHONE = "phone"
UNKNOWN = "unknown"

PRIMARY_EMAIL = "primary email"
PRIMARY_MOBILE = "primary mobile"

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_PATTERN = re.compile(r"^\+?[1-9]\d{9,14}$")

MOBILE_INDICATORS: Tuple[str, ...] = ("+1", "1", "91", "+91", "44", "+44")

_PHONE_TYPES = {PHONE, MOBILE, PRIMARY_MOBILE}
_EMAIL_TYPES = {EMAIL, PRIMARY_EMAIL}


def normalize_type_name(contact_type: str) -> str:
    """Normalise un nom de type: "Primary_Email" → "primary email"."""
    return " ".join((contact_type or "").strip().lower().replace("_", " ").split())


def is_primary_type(contact_type: str) -> bool:
    return normalize_type_name(contact_type) in (PRIMARY_EMAIL, PRIMARY_MOBILE)


def base_type(contact_type: str) -> str:
    """Type de base: email, mobile, phone ou le nom normalisé."""
    name = normalize_type_name(contact_type)
    if name in _EMAIL_TYPES:
        return EMAIL
    if name == PRIMARY_MOBILE:
        return MOBILE
    return name


def primary_type_for(contact_type: str) -> Optional[str]:
    """Type primaire utilisé pour la connexion (email → primary email)."""
    base = base_type(contact_type)
    if base == EMAIL:
        return PRIMARY_EMAIL
    if base in (MOBILE, PHONE):
        return PRIMARY_MOBILE
    return None


def detect_contact_type(value: str) -> str:
    """
    Détecte le type d'un contact brut.

    Returns:
        "email", "mobile", "phone" ou "unknown"
    """
    trimmed = (value or "").strip().lower()

    if EMAIL_PATTERN.match(trimmed):
        return EMAIL

    digits = re.sub(r"[\s\-()]", "", trimmed)
    if PHONE_PATTERN.match(digits):
        if digits.startswith(MOBILE_INDICATORS):
            return MOBILE
        return PHONE

    return UNKNOWN


def format_contact(value: str, contact_type: str) -> str:
    """Forme canonique stockée: email en minuscules, téléphone chiffres et +."""
    trimmed = (value or "").strip().lower()
    name = normalize_type_name(contact_type)

    if name in _PHONE_TYPES:
        return re.sub(r"[^\d+]", "", trimmed)

    return trimmed


def validate_contact_format(value: str, contact_type: str) -> Tuple[bool, Optional[str]]:
    """
    Returns:
        (valide, message d'erreur ou None)
    """
    trimmed = (value or "").strip()
    name = normalize_type_name(contact_type)

    if name in _EMAIL_TYPES:
        if not EMAIL_PATTERN.match(trimmed):
            return False, "Invalid email format"
        return True, None

    if name in _PHONE_TYPES:
        digits = re.sub(r"[^\d+]", "", trimmed)
        if not PHONE_PATTERN.match(digits):
            return False, "Invalid phone number format. Must be 10-15 digits."
        return True, None

    return False, f"Unknown contact type: {contact_type}"
