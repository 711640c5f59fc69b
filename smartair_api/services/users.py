"""
Directorio de usuarios (colección Users).

SEGURIDAD:
- La contraseña se guarda como PBKDF2-SHA256 con salt aleatorio
- El hash nunca sale del servicio (ver ``public_user``)
- Email único, comparado sin distinguir mayúsculas
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import os
import re
from typing import Any, Dict, List, Optional

from pymongo.database import Database

from common.db import USERS
from ..ngsi import object_id_or_none, utcnow

logger = logging.getLogger(__name__)

DEFAULT_ROLE = "citizen"
_PBKDF2_ITERATIONS = 200_000


class DuplicateEmailError(ValueError):
    pass


def _hash_password(password: str, salt: Optional[bytes] = None) -> str:
    """Devuelve ``salt$hash`` en hex."""
    salt = salt or os.urandom(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt, _PBKDF2_ITERATIONS)
    return f"{salt.hex()}${digest.hex()}"


def _verify_password(password: str, stored: str) -> bool:
    try:
        salt_hex, _ = stored.split("$", 1)
        salt = bytes.fromhex(salt_hex)
    except (AttributeError, ValueError):
        return False
    return hmac.compare_digest(_hash_password(password, salt), stored)


def public_user(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if doc is None:
        return None
    return {
        "id": str(doc["_id"]),
        "email": doc.get("email"),
        "name": doc.get("name"),
        "role": doc.get("role") or DEFAULT_ROLE,
    }


class UserService:
    def __init__(self, db: Database):
        self._collection = db[USERS]

    def get_all(self) -> List[Dict[str, Any]]:
        return [public_user(doc) for doc in self._collection.find()]

    def get_by_id(self, user_id: str) -> Optional[Dict[str, Any]]:
        oid = object_id_or_none(user_id)
        if oid is None:
            return None
        return public_user(self._collection.find_one({"_id": oid}))

    def _find_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        pattern = "^" + re.escape(email.strip()) + "$"
        return self._collection.find_one({"email": {"$regex": pattern, "$options": "i"}})

    def get_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        return public_user(self._find_by_email(email))

    def names_by_id(self, user_ids: List[str]) -> Dict[str, str]:
        oids = [oid for oid in (object_id_or_none(u) for u in user_ids) if oid is not None]
        if not oids:
            return {}
        return {
            str(doc["_id"]): doc.get("name") or doc.get("email")
            for doc in self._collection.find({"_id": {"$in": oids}})
        }

    def create(self, email: str, password: str, name: str, role: Optional[str] = None) -> Dict[str, Any]:
        """Registra un usuario nuevo.

        Raises:
            DuplicateEmailError: si el email ya está registrado
        """
        if self._find_by_email(email) is not None:
            raise DuplicateEmailError(f"Email already registered: {email}")

        doc = {
            "email": email.strip(),
            "name": name.strip(),
            "password": _hash_password(password),
            "role": role or DEFAULT_ROLE,
            "createdAt": utcnow(),
        }
        self._collection.insert_one(doc)
        logger.info("[USERS] Registered user %s", doc["email"])
        return public_user(doc)

    def authenticate(self, email: str, password: str) -> Optional[Dict[str, Any]]:
        doc = self._find_by_email(email)
        if doc is None or not _verify_password(password, doc.get("password", "")):
            return None
        return public_user(doc)

    def delete(self, user_id: str) -> bool:
        oid = object_id_or_none(user_id)
        if oid is None:
            return False
        return self._collection.delete_one({"_id": oid}).deleted_count > 0
