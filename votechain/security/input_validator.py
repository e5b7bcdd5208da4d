# votechain/security/input_validator.py

import math
import re
from numbers import Real

import bleach

from votechain.authentication.face import MIN_DESCRIPTOR_LENGTH
from votechain.errors import ValidationError

# Request-body validation and sanitization. Every check raises ValidationError
# with a message naming the offending field.


class InputValidator:
    def __init__(self):
        self.allowed_html_tags = []
        self.allowed_html_attributes = {}

        self.patterns = {
            'username': re.compile(r'^[A-Za-z0-9_.@-]{3,64}$'),
            'identifier': re.compile(r'^[A-Za-z0-9_.:-]{1,100}$'),
            'totp_code': re.compile(r'^\d{6}$'),
            'xss_script': re.compile(r'<script[^>]*>.*?</script>', re.IGNORECASE | re.DOTALL),
            'xss_event': re.compile(r'\bon\w+\s*=', re.IGNORECASE),
        }

    def sanitize_string(self, input_str, max_length=255):
        if not isinstance(input_str, str):
            raise ValidationError("Input must be a string")
        if len(input_str) > max_length:
            input_str = input_str[:max_length]

        sanitized = re.sub(self.patterns['xss_script'], '', input_str)
        sanitized = re.sub(self.patterns['xss_event'], '', sanitized)
        sanitized = bleach.clean(sanitized, tags=self.allowed_html_tags,
                                 attributes=self.allowed_html_attributes, strip=True)
        return sanitized.strip()

    def _require_object(self, data):
        if not isinstance(data, dict):
            raise ValidationError("Request body must be a JSON object")
        return data

    def _require_string(self, data, field):
        value = data.get(field)
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(f"{field} is required")
        return value

    def validate_username(self, username):
        return isinstance(username, str) and bool(self.patterns['username'].match(username))

    def validate_identifier(self, value):
        return isinstance(value, str) and bool(self.patterns['identifier'].match(value))

    def validate_registration(self, data):
        data = self._require_object(data)
        username = self._require_string(data, 'username').strip()
        if not self.validate_username(username):
            raise ValidationError("username must be 3-64 letters, digits or . _ @ -")
        password = self._require_string(data, 'password')
        full_name = self.sanitize_string(self._require_string(data, 'fullName'), max_length=200)
        if not full_name:
            raise ValidationError("fullName is required")
        return {'username': username, 'password': password, 'full_name': full_name}

    def validate_login(self, data):
        data = self._require_object(data)
        totp_code = data.get('totpCode')
        if totp_code is not None and not isinstance(totp_code, str):
            raise ValidationError("totpCode must be a string")
        return {
            'username': self._require_string(data, 'username').strip(),
            'password': self._require_string(data, 'password'),
            'totp_code': totp_code or None,
        }

    def validate_totp_code(self, data):
        data = self._require_object(data)
        code = data.get('code')
        if not isinstance(code, str) or not self.patterns['totp_code'].match(code):
            raise ValidationError("TOTP code must be 6 digits")
        return code

    def validate_face_descriptor(self, descriptor):
        if not isinstance(descriptor, list) or len(descriptor) < MIN_DESCRIPTOR_LENGTH:
            raise ValidationError(
                f"Face descriptor must have at least {MIN_DESCRIPTOR_LENGTH} dimensions")
        for value in descriptor:
            if isinstance(value, bool) or not isinstance(value, Real) or not math.isfinite(value):
                raise ValidationError("Face descriptor must contain only finite numbers")
        return [float(v) for v in descriptor]

    def validate_face_enrollment(self, data):
        data = self._require_object(data)
        return self.validate_face_descriptor(data.get('faceDescriptor'))

    def validate_face_verification(self, data):
        data = self._require_object(data)
        return {
            'username': self._require_string(data, 'username').strip(),
            'face_descriptor': self.validate_face_descriptor(data.get('faceDescriptor')),
        }

    def validate_vote_request(self, data):
        data = self._require_object(data)
        election_id = self._require_string(data, 'electionId')
        candidate_id = self._require_string(data, 'candidateId')
        if not self.validate_identifier(election_id):
            raise ValidationError("Invalid electionId")
        if not self.validate_identifier(candidate_id):
            raise ValidationError("Invalid candidateId")
        return {'election_id': election_id, 'candidate_id': candidate_id}
