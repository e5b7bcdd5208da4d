# votechain/routes.py

# JSON API for registration, the three-factor login, voting and results.
# Handlers stay thin: they validate input, call the gate / orchestrator /
# tally and shape the response. Domain errors are rendered by the error
# handlers at the bottom of this module.

import logging

import click
from flask import jsonify, request
from flask_jwt_extended import current_user, jwt_required
from werkzeug.exceptions import HTTPException

from votechain import app, db, jwt, limiter
from votechain.audit.audit_logger import AuditLogger
from votechain.authentication.face import FaceMatcher
from votechain.authentication.gate import AuthenticationGate, LoginStage
from votechain.authentication.mfa import MFAService
from votechain.database import store
from votechain.encryption.password_hashing import PasswordHashingService
from votechain.errors import (AccessTokenMissing, ElectionNotFound, FactorsIncomplete,
                              TokenInvalidOrExpired, UsernameExists, VoteChainError)
from votechain.ledger.chain import LedgerEngine
from votechain.security.input_validator import InputValidator
from votechain.security.intrusion_detection import IntrusionDetection
from votechain.security.token_manager import FACTOR_PASSWORD, TokenManager
from votechain.voting.orchestrator import VoteCaster
from votechain.voting.tally import tally_election

logger = logging.getLogger(__name__)

password_service = PasswordHashingService()
mfa_service = MFAService(valid_window=app.config['TOTP_VALID_WINDOW'])
face_matcher = FaceMatcher(threshold=app.config['FACE_MATCH_THRESHOLD'])
token_manager = TokenManager(app)
validator = InputValidator()
audit_logger = AuditLogger.from_config(app.config)
intrusion_detection = IntrusionDetection(
    max_attempts=app.config['MAX_FAILED_ATTEMPTS'],
    lockout_minutes=app.config['LOCKOUT_MINUTES'],
)
ledger = LedgerEngine(
    difficulty=app.config['LEDGER_DIFFICULTY'],
    max_attempts=app.config['LEDGER_MAX_ATTEMPTS'],
)
gate = AuthenticationGate(password_service, mfa_service, face_matcher, token_manager,
                          intrusion_detection=intrusion_detection, audit_logger=audit_logger)
vote_caster = VoteCaster(ledger, audit_logger=audit_logger)


def auth_rate_limit():
    return app.config['LOGIN_RATE_LIMIT']


# Token handling: the token names the user, the user record is re-read on every request.

@jwt.user_lookup_loader
def load_user(_jwt_header, jwt_data):
    return store.get_user(jwt_data["sub"])


@jwt.user_lookup_error_loader
def user_lookup_error(_jwt_header, jwt_data):
    return jsonify(TokenInvalidOrExpired("Invalid token", status_code=401).to_dict()), 401


@jwt.unauthorized_loader
def missing_token(reason):
    return jsonify(AccessTokenMissing().to_dict()), 401


@jwt.invalid_token_loader
def invalid_token(reason):
    audit_logger.log_security_event("authentication", "token_validate_failed",
                                    {"ip": request.remote_addr, "reason": reason})
    return jsonify(TokenInvalidOrExpired().to_dict()), 403


@jwt.expired_token_loader
def expired_token(_jwt_header, jwt_payload):
    return jsonify(TokenInvalidOrExpired("Token has expired").to_dict()), 403


# Authentication

@app.route('/api/auth/register', methods=['POST'])
@limiter.limit(auth_rate_limit)
def register():
    data = validator.validate_registration(request.get_json(silent=True))
    if store.get_user_by_username(data['username']):
        raise UsernameExists()
    user = store.create_user(data['username'], password_service.hash_password(data['password']),
                             data['full_name'])
    token = token_manager.issue_token(user.id, {FACTOR_PASSWORD})
    audit_logger.log_security_event("iam", "user_create",
                                    {"username": user.username, "ip": request.remote_addr},
                                    user_id=user.id)
    return jsonify({
        'message': "User created successfully",
        'token': token,
        'user': {
            'id': user.id,
            'username': user.username,
            'fullName': user.full_name,
            'totpEnabled': bool(user.totp_enabled),
        },
    }), 201


@app.route('/api/auth/login', methods=['POST'])
@limiter.limit(auth_rate_limit)
def login():
    data = validator.validate_login(request.get_json(silent=True))
    outcome = gate.login(data['username'], data['password'], data['totp_code'],
                         remote_addr=request.remote_addr)
    user = outcome.user

    if outcome.stage is LoginStage.TOTP_SETUP_REQUIRED:
        return jsonify({
            'message': "TOTP setup required",
            'token': outcome.token,
            'requiresTotpSetup': True,
            'user': user.to_public(),
        })
    if outcome.stage is LoginStage.FACE_SETUP_REQUIRED:
        return jsonify({
            'message': "Face recognition setup required",
            'token': outcome.token,
            'requiresFaceSetup': True,
            'user': user.to_public(),
        })
    return jsonify({
        'message': "Credentials validated - face verification required",
        'token': outcome.token,
        'requiresFaceVerification': True,
        'user': user.to_public(include_face=True),
    })


@app.route('/api/auth/setup-totp', methods=['GET'])
@jwt_required()
def setup_totp():
    return jsonify(gate.begin_totp_setup(current_user))


@app.route('/api/auth/verify-totp', methods=['POST'])
@jwt_required()
def verify_totp():
    code = validator.validate_totp_code(request.get_json(silent=True))
    outcome = gate.confirm_totp_setup(current_user, token_manager.get_factors(), code)
    return jsonify({
        'message': "TOTP verified and enabled successfully",
        'backupCodes': mfa_service.generate_backup_codes(),
        'token': outcome.token,
        'requiresFaceSetup': outcome.stage is LoginStage.FACE_SETUP_REQUIRED,
    })


@app.route('/api/auth/enroll-face', methods=['POST'])
@jwt_required()
def enroll_face():
    descriptor = validator.validate_face_enrollment(request.get_json(silent=True))
    outcome = gate.enroll_face(current_user, token_manager.get_factors(), descriptor)
    return jsonify({
        'message': "Face enrolled successfully",
        'faceEnabled': True,
        'token': outcome.token,
    })


@app.route('/api/auth/verify-face', methods=['POST'])
@jwt_required()
@limiter.limit(auth_rate_limit)
def verify_face():
    data = validator.validate_face_verification(request.get_json(silent=True))
    if data['username'] != current_user.username:
        raise FactorsIncomplete("Face verification must continue the login attempt of the same user")
    outcome = gate.resume(current_user, token_manager.get_factors())
    outcome = gate.submit_face(outcome, data['face_descriptor'], remote_addr=request.remote_addr)
    return jsonify({
        'message': "Face verification successful",
        'isMatch': True,
        'confidence': outcome.face_match.confidence,
        'token': outcome.token,
        'user': outcome.user.to_public(),
    })


@app.route('/api/user/me', methods=['GET'])
@jwt_required()
def me():
    return jsonify(current_user.to_public())


# Elections and voting

@app.route('/api/elections', methods=['GET'])
@jwt_required()
def list_elections():
    return jsonify([e.to_dict() for e in store.get_elections()])


@app.route('/api/elections/<election_id>', methods=['GET'])
@jwt_required()
def get_election(election_id):
    election = store.get_election(election_id)
    if election is None:
        raise ElectionNotFound()
    return jsonify(election.to_dict())


@app.route('/api/vote', methods=['POST'])
@jwt_required()
def vote():
    data = validator.validate_vote_request(request.get_json(silent=True))
    receipt = vote_caster.cast_vote(current_user, data['election_id'], data['candidate_id'],
                                    token_manager.get_factors())
    return jsonify({
        'message': "Vote recorded successfully",
        'blockHash': receipt.block_hash,
        'blockNumber': receipt.block_number,
        'voteId': receipt.vote_id,
    })


@app.route('/api/results/<election_id>', methods=['GET'])
@jwt_required()
def results(election_id):
    return jsonify(tally_election(election_id, ledger))


@app.route('/api/chain/verify', methods=['GET'])
@jwt_required()
def verify_chain():
    faults = ledger.audit_chain()
    return jsonify({
        'valid': not faults,
        'totalBlocks': len(ledger.blocks()),
        'faults': faults,
    })


# Errors

@app.errorhandler(VoteChainError)
def handle_domain_error(error):
    return jsonify(error.to_dict()), error.status_code


@app.errorhandler(HTTPException)
def handle_http_error(error):
    return jsonify({'error': error.name, 'message': error.description}), error.code


@app.errorhandler(Exception)
def handle_unexpected_error(error):
    db.session.rollback()
    logger.exception("Unhandled error on %s %s", request.method, request.path)
    return jsonify({'error': "InternalError", 'message': "Internal server error"}), 500


# CLI

@app.cli.command('init-db')
def init_db_command():
    """Create the tables and seed the sample election if none exists."""
    election = store.init_storage()
    if election:
        click.echo(f"Created election {election.id}: {election.title}")
    else:
        click.echo("Database already initialized")
