import hmac
import secrets

CODE_LENGTH = 6
_LOWEST = 10 ** (CODE_LENGTH - 1)          # 100000
_SPAN = 10 ** CODE_LENGTH - _LOWEST        # 900000 values, 100000..999999

def generate_code() -> str:
    """Six-digit numeric code with no leading zero, drawn from a CSPRNG."""
    return str(_LOWEST + secrets.randbelow(_SPAN))

def codes_match(submitted: str, expected: str) -> bool:
    return hmac.compare_digest(submitted.encode(), expected.encode())
