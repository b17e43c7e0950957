from dataclasses import dataclass

import jwt


@dataclass
class TokenPayload:
    user_id: str
    user_name: str | None = None


class TokenClient:
    """Verifies HS256 access tokens issued by the identity service."""

    def __init__(self, secret_key: str, leeway_seconds: int = 10):
        self.secret_key = secret_key
        # Allow small clock skew when decoding tokens
        self.leeway_seconds = leeway_seconds

    def decode_token(self, token: str) -> dict:
        """Decode and verify a token"""
        try:
            return jwt.decode(
                token,
                self.secret_key,
                algorithms=["HS256"],
                leeway=self.leeway_seconds,
            )
        except jwt.ExpiredSignatureError:
            raise ValueError("Token has expired")
        except jwt.InvalidTokenError:
            raise ValueError("Invalid token")

    def decode_payload(self, token: str) -> TokenPayload:
        """Verified token claims as a TokenPayload; a token without user_id is invalid."""
        claims = self.decode_token(token)
        user_id = claims.get("user_id")
        if not user_id:
            raise ValueError("Invalid token")
        return TokenPayload(user_id=str(user_id), user_name=claims.get("user_name"))
