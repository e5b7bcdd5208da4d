# votechain/security/token_manager.py
from datetime import timedelta

from flask import Flask
from flask_jwt_extended import create_access_token, get_jwt

TOKEN_LIFETIME = timedelta(hours=24)

FACTOR_PASSWORD = "password"
FACTOR_TOTP = "totp"
FACTOR_FACE = "face"
ALL_FACTORS = (FACTOR_PASSWORD, FACTOR_TOTP, FACTOR_FACE)


# Signed, time-bound bearer tokens. The identity is the user id; the
# `factors` claim snapshots which factors were satisfied in the login
# attempt that issued the token.
class TokenManager:
    def __init__(self, app: Flask = None):
        if app:
            self.init_app(app)

    def init_app(self, app: Flask):
        app.config.setdefault("JWT_ACCESS_TOKEN_EXPIRES", TOKEN_LIFETIME)

    def issue_token(self, user_id: str, factors, expires_delta: timedelta = None) -> str:
        return create_access_token(
            identity=str(user_id),
            additional_claims={"factors": sorted(set(factors))},
            expires_delta=expires_delta,  # None -> JWT_ACCESS_TOKEN_EXPIRES
        )

    def get_factors(self):
        """Factor snapshot of the token on the current request."""
        return frozenset(get_jwt().get("factors", ()))
