# votechain/authentication/gate.py

# Login state machine: password -> TOTP -> face.
#
# The stage of a login attempt is derived from two things only: which
# factors the user has enabled, and which factors were satisfied in this
# attempt (the token's factor snapshot). Each submit_* method is the
# transition out of exactly one stage and refuses to run from any other.

import logging
from collections import namedtuple
from enum import Enum

from votechain.database import store
from votechain.errors import (FaceAlreadyEnrolled, FaceMismatch, FaceNotEnrolled, FactorsIncomplete,
                              InvalidCredentials, InvalidTotp, TooManyAttempts, TotpAlreadyEnabled,
                              TotpCodeRequired, TotpNotInitialized)
from votechain.security.token_manager import FACTOR_FACE, FACTOR_PASSWORD, FACTOR_TOTP

logger = logging.getLogger(__name__)


class LoginStage(Enum):
    PASSWORD_PENDING = "password_pending"
    TOTP_SETUP_REQUIRED = "totp_setup_required"
    TOTP_PENDING = "totp_pending"
    FACE_SETUP_REQUIRED = "face_setup_required"
    FACE_PENDING = "face_pending"
    AUTHENTICATED = "authenticated"


# Stages at which the attempt holds a bearer token.
TOKEN_STAGES = {
    LoginStage.TOTP_SETUP_REQUIRED,
    LoginStage.FACE_SETUP_REQUIRED,
    LoginStage.FACE_PENDING,
    LoginStage.AUTHENTICATED,
}

LoginOutcome = namedtuple('LoginOutcome', ['stage', 'user', 'factors', 'token', 'face_match'])


def stage_for(user, factors):
    """Where a login attempt stands for `user` given the factors satisfied so far."""
    factors = frozenset(factors)
    if user is None or FACTOR_PASSWORD not in factors:
        return LoginStage.PASSWORD_PENDING
    if not user.totp_enabled:
        return LoginStage.TOTP_SETUP_REQUIRED
    if FACTOR_TOTP not in factors:
        return LoginStage.TOTP_PENDING
    if not user.face_enabled:
        return LoginStage.FACE_SETUP_REQUIRED
    if FACTOR_FACE not in factors:
        return LoginStage.FACE_PENDING
    return LoginStage.AUTHENTICATED


class AuthenticationGate:
    def __init__(self, password_service, mfa_service, face_matcher, token_manager,
                 intrusion_detection=None, audit_logger=None):
        self.password_service = password_service
        self.mfa_service = mfa_service
        self.face_matcher = face_matcher
        self.token_manager = token_manager
        self.intrusion_detection = intrusion_detection
        self.audit_logger = audit_logger

    # helpers

    def _audit(self, category, action, data, user_id=None):
        if self.audit_logger:
            self.audit_logger.log_security_event(category, action, data, user_id=user_id)

    def _guard(self, username, remote_addr, factor):
        if not self.intrusion_detection:
            return None
        key = self.intrusion_detection.make_key(username, remote_addr, factor)
        if self.intrusion_detection.is_locked(key):
            raise TooManyAttempts(retryAfter=self.intrusion_detection.retry_after(key))
        return key

    def _failed(self, key, username, remote_addr):
        if key is None:
            return
        self.intrusion_detection.record_failure(key)
        if self.intrusion_detection.is_locked(key):
            self._audit("authentication", "lockout", {"username": username, "ip": remote_addr})

    def _succeeded(self, key):
        if key is not None:
            self.intrusion_detection.record_success(key)

    def _advance(self, user, factors, face_match=None):
        factors = frozenset(factors)
        stage = stage_for(user, factors)
        token = None
        if stage in TOKEN_STAGES:
            token = self.token_manager.issue_token(user.id, factors)
        logger.debug("Login for %s advanced to %s", user.username, stage.value)
        return LoginOutcome(stage, user, factors, token, face_match)

    def _expect(self, outcome, stage):
        if outcome.stage is not stage:
            raise FactorsIncomplete(f"Login is at stage {outcome.stage.value}, not {stage.value}")

    def resume(self, user, factors):
        """Rebuild the outcome of an attempt from a token's factor snapshot."""
        factors = frozenset(factors)
        return LoginOutcome(stage_for(user, factors), user, factors, None, None)

    # transitions

    def submit_password(self, username, password, remote_addr=None):
        """PASSWORD_PENDING -> TOTP_SETUP_REQUIRED | TOTP_PENDING."""
        key = self._guard(username, remote_addr, FACTOR_PASSWORD)
        user = store.get_user_by_username(username)
        if user is None or not self.password_service.verify_password(password, user.password_hash):
            self._failed(key, username, remote_addr)
            self._audit("authentication", "login_failed", {"username": username, "ip": remote_addr})
            # same answer for unknown user and wrong password
            raise InvalidCredentials()
        self._succeeded(key)
        if self.password_service.needs_rehash(user.password_hash):
            store.set_password_hash(user, self.password_service.rehash(password))
        return self._advance(user, {FACTOR_PASSWORD})

    def submit_totp(self, outcome, code, remote_addr=None):
        """TOTP_PENDING -> FACE_SETUP_REQUIRED | FACE_PENDING."""
        self._expect(outcome, LoginStage.TOTP_PENDING)
        user = outcome.user
        key = self._guard(user.username, remote_addr, FACTOR_TOTP)
        if not self.mfa_service.verify_totp(user.totp_secret, code):
            self._failed(key, user.username, remote_addr)
            self._audit("authentication", "mfa_failed", {"username": user.username, "ip": remote_addr},
                        user_id=user.id)
            raise InvalidTotp()
        self._succeeded(key)
        return self._advance(user, outcome.factors | {FACTOR_TOTP})

    def submit_face(self, outcome, descriptor, remote_addr=None):
        """FACE_PENDING -> AUTHENTICATED."""
        user = outcome.user
        if not user.face_enabled or not user.face_descriptor:
            raise FaceNotEnrolled()
        self._expect(outcome, LoginStage.FACE_PENDING)
        key = self._guard(user.username, remote_addr, FACTOR_FACE)
        match = self.face_matcher.compare(descriptor, user.face_descriptor)
        if not match.is_match:
            self._failed(key, user.username, remote_addr)
            self._audit("authentication", "biometric_failed",
                        {"username": user.username, "ip": remote_addr}, user_id=user.id)
            raise FaceMismatch(isMatch=False, confidence=match.confidence)
        self._succeeded(key)
        self._audit("authentication", "login_success",
                    {"username": user.username, "ip": remote_addr, "auth_method": "biometric"},
                    user_id=user.id)
        return self._advance(user, outcome.factors | {FACTOR_FACE}, face_match=match)

    def login(self, username, password, totp_code=None, remote_addr=None):
        """Password and, when enabled, TOTP in a single call."""
        outcome = self.submit_password(username, password, remote_addr)
        if outcome.stage is LoginStage.TOTP_PENDING:
            if not totp_code:
                raise TotpCodeRequired(requiresTotp=True)
            outcome = self.submit_totp(outcome, totp_code, remote_addr)
        return outcome

    # setup flows

    def begin_totp_setup(self, user):
        """Provision a new pending secret. It only counts once confirm_totp_setup succeeds."""
        if user.totp_enabled:
            raise TotpAlreadyEnabled()
        secret = self.mfa_service.generate_secret()
        store.set_totp_secret(user, secret)
        return {
            "secret": secret,
            "qrCode": self.mfa_service.generate_qr_code(secret, user.username),
            "manualEntryKey": secret,
        }

    def confirm_totp_setup(self, user, factors, code):
        """Enable TOTP once the user proves the freshly provisioned secret works."""
        if user.totp_enabled:
            raise TotpAlreadyEnabled()
        if not user.totp_secret:
            raise TotpNotInitialized()
        if not self.mfa_service.verify_totp(user.totp_secret, code):
            self._audit("authentication", "mfa_failed", {"username": user.username, "stage": "setup"},
                        user_id=user.id)
            raise InvalidTotp(status_code=400)
        store.enable_totp(user)
        self._audit("iam", "mfa_enable", {}, user_id=user.id)
        return self._advance(user, frozenset(factors) | {FACTOR_TOTP})

    def enroll_face(self, user, factors, descriptor):
        """Store the enrolled descriptor; the live capture satisfies the face factor."""
        factors = frozenset(factors)
        if user.face_enabled:
            raise FaceAlreadyEnrolled()
        if FACTOR_TOTP not in factors or not user.totp_enabled:
            raise FactorsIncomplete("Complete TOTP verification before enrolling a face")
        store.enroll_face(user, descriptor)
        self._audit("iam", "biometric_enable", {}, user_id=user.id)
        return self._advance(user, factors | {FACTOR_FACE})
