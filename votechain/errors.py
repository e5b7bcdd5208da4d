# votechain/errors.py

# Domain error taxonomy. Every error carries a stable `reason` for clients,
# a human-readable message and the HTTP status the API answers with.


class VoteChainError(Exception):
    status_code = 400
    reason = "VoteChainError"
    default_message = "Request failed"

    def __init__(self, message=None, status_code=None, **extra):
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        self.extra = extra
        super().__init__(self.message)

    def to_dict(self):
        body = {"error": self.reason, "message": self.message}
        body.update(self.extra)
        return body


class ValidationError(VoteChainError, ValueError):
    reason = "ValidationError"
    default_message = "Invalid request data"


class UsernameExists(VoteChainError):
    reason = "UsernameExists"
    default_message = "Username already exists"


# Authentication factors

class InvalidCredentials(VoteChainError):
    status_code = 401
    reason = "InvalidCredentials"
    default_message = "Invalid credentials"


class TotpCodeRequired(VoteChainError):
    status_code = 401
    reason = "TotpCodeRequired"
    default_message = "TOTP code required"


class InvalidTotp(VoteChainError):
    status_code = 401
    reason = "InvalidTotp"
    default_message = "Invalid TOTP code"


class FaceMismatch(VoteChainError):
    status_code = 401
    reason = "FaceMismatch"
    default_message = "Face verification failed"


class FaceNotEnrolled(VoteChainError):
    status_code = 401
    reason = "FaceNotEnrolled"
    default_message = "Face recognition not enabled for this user"


class TotpAlreadyEnabled(VoteChainError):
    reason = "TotpAlreadyEnabled"
    default_message = "TOTP already enabled"


class TotpNotInitialized(VoteChainError):
    reason = "TotpNotInitialized"
    default_message = "TOTP not initialized. Call setup-totp first."


class FaceAlreadyEnrolled(VoteChainError):
    reason = "FaceAlreadyEnrolled"
    default_message = "Face recognition already enabled for this user"


class TooManyAttempts(VoteChainError):
    status_code = 429
    reason = "TooManyAttempts"
    default_message = "Too many failed attempts, try again later"


# Bearer tokens

class AccessTokenMissing(VoteChainError):
    status_code = 401
    reason = "AccessTokenMissing"
    default_message = "Access token required"


class TokenInvalidOrExpired(VoteChainError):
    status_code = 403
    reason = "TokenInvalidOrExpired"
    default_message = "Invalid or expired token"


# Voting

class TotpRequired(VoteChainError):
    status_code = 403
    reason = "TotpRequired"
    default_message = "TOTP authentication must be enabled before voting. Please complete 2FA setup."


class FaceRequired(VoteChainError):
    status_code = 403
    reason = "FaceRequired"
    default_message = ("Face recognition must be enabled before voting. "
                       "Please complete face authentication setup.")


class FactorsIncomplete(VoteChainError):
    status_code = 403
    reason = "FactorsIncomplete"
    default_message = "Complete every enabled authentication factor first"


class ElectionNotFound(VoteChainError):
    status_code = 404
    reason = "ElectionNotFound"
    default_message = "Election not found"


class ElectionInactive(VoteChainError):
    reason = "ElectionInactive"
    default_message = "Election is not active"


class CandidateNotFound(VoteChainError):
    reason = "CandidateNotFound"
    default_message = "Candidate is not on this election's ballot"


class DuplicateVote(VoteChainError):
    reason = "DuplicateVote"
    default_message = "You have already voted in this election"


class LedgerConflict(VoteChainError):
    status_code = 409
    reason = "LedgerConflict"
    default_message = "The ledger was extended concurrently, please retry"


class SealingError(VoteChainError):
    status_code = 500
    reason = "SealingError"
    default_message = "Proof-of-work sealing exceeded its attempt ceiling"
