# votechain/authentication/mfa.py

import base64
import secrets
from io import BytesIO

import pyotp
import qrcode

# Second factor: TOTP secrets, provisioning QR codes and code verification.

ISSUER_NAME = "VoteChain"
DEFAULT_VALID_WINDOW = 2  # +/- two 30s steps of clock drift
BACKUP_CODE_COUNT = 8


class MFAService:
    def __init__(self, issuer_name=ISSUER_NAME, valid_window=DEFAULT_VALID_WINDOW):
        self.issuer_name = issuer_name
        self.valid_window = valid_window

    def generate_secret(self):
        """Generate a base32 secret key for TOTP (160 bits)."""
        return pyotp.random_base32(length=32)

    def get_totp_uri(self, username, secret):
        """Return the otpauth URI for authenticator apps."""
        totp = pyotp.TOTP(secret)
        return totp.provisioning_uri(name=username, issuer_name=self.issuer_name)

    def generate_qr_code(self, secret, username):
        """PNG QR code of the provisioning URI, as a data URL."""
        qr = qrcode.QRCode(box_size=6, border=2)
        qr.add_data(self.get_totp_uri(username, secret))
        qr.make(fit=True)
        img = qr.make_image(fill_color="black", back_color="white")

        buffered = BytesIO()
        img.save(buffered, format="PNG")
        img_base64 = base64.b64encode(buffered.getvalue()).decode()
        return f"data:image/png;base64,{img_base64}"

    def verify_totp(self, secret, code, window=None):
        if not secret or not isinstance(code, str):
            return False
        code = code.strip()
        if len(code) != 6 or not code.isdigit():
            return False
        totp = pyotp.TOTP(secret)
        return totp.verify(code, valid_window=self.valid_window if window is None else window)

    def generate_backup_codes(self, count=BACKUP_CODE_COUNT):
        """One-time recovery codes: six upper-case hex characters each."""
        return [secrets.token_hex(3).upper() for _ in range(count)]
