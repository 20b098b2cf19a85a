"""Password hashing utilities.

Learn: bcrypt includes a random salt automatically and produces hashes
starting with "$2b$". Passwords are truncated to 72 bytes (bcrypt's limit).
"""

import bcrypt


def hash_password(password: str, rounds: int = 12) -> str:
    pw_bytes = password.encode("utf-8")[:72]
    return bcrypt.hashpw(pw_bytes, bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(
            password.encode("utf-8")[:72], password_hash.encode("utf-8")
        )
    except (ValueError, TypeError):
        return False
