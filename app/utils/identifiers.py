import secrets
import string

_ALPHABET = string.ascii_lowercase + string.digits


def generate_user_id() -> str:
    """Return a fresh ``user_`` identifier with a 9-character base36 suffix."""
    return "user_" + "".join(secrets.choice(_ALPHABET) for _ in range(9))
