# votechain/database/store.py

# Credential store: the only place that reads and writes persistent records.
# Votes and blocks are written by the ledger/orchestrator through the same
# session so a vote and its sealing block commit together.

import logging
from datetime import timedelta

from sqlalchemy.exc import IntegrityError

from votechain import db
from votechain.database.models import Election, User, Vote, utcnow
from votechain.errors import FaceAlreadyEnrolled, UsernameExists

logger = logging.getLogger(__name__)

DEFAULT_ELECTION = {
    'title': "2024 Student Council Election",
    'description': "Vote for your student representative",
    'candidates': [
        {'id': "candidate-1", 'name': "Alice Johnson", 'party': "Progressive Party"},
        {'id': "candidate-2", 'name': "Bob Smith", 'party': "Conservative Party"},
        {'id': "candidate-3", 'name': "Carol Davis", 'party': "Independent"},
    ],
}


# Users

def get_user(user_id):
    return db.session.get(User, user_id)


def get_user_by_username(username):
    return db.session.query(User).filter_by(username=username).first()


def create_user(username, password_hash, full_name):
    if get_user_by_username(username):
        raise UsernameExists()
    user = User(username=username, password_hash=password_hash, full_name=full_name)
    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError:
        # lost a registration race on the unique username
        db.session.rollback()
        raise UsernameExists()
    return user


def set_password_hash(user, password_hash):
    user.password_hash = password_hash
    db.session.commit()
    return user


def set_totp_secret(user, secret):
    user.totp_secret = secret
    db.session.commit()
    return user


def enable_totp(user):
    user.totp_enabled = True
    db.session.commit()
    return user


def enroll_face(user, descriptor):
    if user.face_enabled:
        raise FaceAlreadyEnrolled()
    user.face_descriptor = [float(x) for x in descriptor]
    user.face_enabled = True
    db.session.commit()
    return user


# Elections

def get_elections():
    return db.session.query(Election).order_by(Election.created_at).all()


def get_election(election_id):
    return db.session.get(Election, election_id)


def create_election(title, description, candidates, start_date, end_date, is_active=True):
    election = Election(
        title=title,
        description=description,
        candidates=candidates,
        start_date=start_date,
        end_date=end_date,
        is_active=is_active,
    )
    db.session.add(election)
    db.session.commit()
    return election


def seed_default_election():
    """Create the sample election when the store holds none."""
    if db.session.query(Election).count():
        return None
    now = utcnow()
    election = create_election(
        start_date=now,
        end_date=now + timedelta(days=7),
        **DEFAULT_ELECTION,
    )
    logger.info("Database initialized with sample election %s", election.id)
    return election


def init_storage():
    db.create_all()
    return seed_default_election()


# Votes

def get_votes(election_id):
    return db.session.query(Vote).filter_by(election_id=election_id).all()


def get_user_vote(user_id, election_id):
    return db.session.query(Vote).filter_by(voter_id=user_id, election_id=election_id).first()


def has_voted(user_id, election_id):
    return get_user_vote(user_id, election_id) is not None
