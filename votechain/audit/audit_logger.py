# votechain/audit/audit_logger.py

import base64
import hashlib
import json
import logging
import os
import threading
from datetime import datetime, timezone

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

# Append-only security audit trail: JSON lines, each carrying the hash of the
# previous entry and an Ed25519 signature. Every event is mirrored to the
# application logger.

logger = logging.getLogger(__name__)

WARNING_ACTIONS = {
    'login_failed', 'mfa_failed', 'biometric_failed', 'token_validate_failed',
    'double_voting', 'lockout',
}


class AuditLogger:
    def __init__(self, log_dir='logs', signing_key=None):
        self.log_dir = log_dir
        self.log_file = os.path.join(log_dir, 'audit.log')
        self.previous_hash = None
        self._lock = threading.Lock()

        os.makedirs(log_dir, exist_ok=True)

        self.signing_key = signing_key or Ed25519PrivateKey.generate()
        self._load_previous_hash()

    @classmethod
    def from_pem(cls, log_dir, pem):
        key = serialization.load_pem_private_key(pem.encode(), password=None)
        return cls(log_dir=log_dir, signing_key=key)

    @classmethod
    def from_config(cls, config):
        """Build from app config; AUDIT_SIGNING_KEY_FILE names an Ed25519 PEM key."""
        log_dir = config.get('AUDIT_LOG_DIR', 'logs')
        key_file = config.get('AUDIT_SIGNING_KEY_FILE')
        if not key_file:
            logger.warning("AUDIT_SIGNING_KEY_FILE not set; audit entries are signed with a "
                           "per-process key and cannot be verified after a restart")
            return cls(log_dir=log_dir)
        with open(key_file, 'r') as f:
            return cls.from_pem(log_dir, f.read())

    def _load_previous_hash(self):
        if not os.path.exists(self.log_file):
            return
        with open(self.log_file, 'r') as f:
            lines = [line for line in f if line.strip()]
        if lines:
            try:
                self.previous_hash = json.loads(lines[-1]).get('hash')
            except json.JSONDecodeError:
                logger.warning("Last audit entry in %s is not valid JSON", self.log_file)
                self.previous_hash = None

    def log_security_event(self, category, action, data=None, user_id=None):
        data = data or {}
        level = logging.WARNING if action in WARNING_ACTIONS else logging.INFO
        logger.log(level, "audit %s/%s user=%s %s", category, action, user_id, data)
        try:
            with self._lock:
                entry = {
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                    "event": {"category": category, "action": action},
                    "data": data,
                    "user_id": user_id,
                    "previous_hash": self.previous_hash,
                }
                entry_json = json.dumps(entry, sort_keys=True, default=str)
                entry['hash'] = hashlib.sha256(entry_json.encode()).hexdigest()
                signature = self.signing_key.sign(entry_json.encode())
                entry['signature'] = base64.b64encode(signature).decode()

                with open(self.log_file, 'a') as f:
                    f.write(json.dumps(entry, default=str) + "\n")

                self.previous_hash = entry['hash']
        except (OSError, TypeError, ValueError):
            # the audit trail must never fail the request it records
            logger.exception("Audit log write failed for %s/%s", category, action)

    def verify_log_integrity(self):
        if not os.path.exists(self.log_file):
            return True
        public_key = self.signing_key.public_key()
        previous_hash = None
        try:
            with open(self.log_file, 'r') as f:
                for line in f:
                    if not line.strip():
                        continue
                    entry = json.loads(line)
                    if entry.get('previous_hash') != previous_hash:
                        return False
                    signature = base64.b64decode(entry.pop('signature'))
                    entry_hash = entry.pop('hash')
                    entry_json = json.dumps(entry, sort_keys=True, default=str).encode()
                    if hashlib.sha256(entry_json).hexdigest() != entry_hash:
                        return False
                    public_key.verify(signature, entry_json)
                    previous_hash = entry_hash
        except (InvalidSignature, KeyError, ValueError):
            return False
        return True
