"""
Password hashing (bcrypt via passlib)
"""

from passlib.context import CryptContext

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    """Constant-time check; malformed hashes count as mismatch"""
    try:
        return pwd_context.verify(password, password_hash)
    except ValueError:
        return False
