# votechain/database/models.py

import uuid
from datetime import datetime, timezone

from votechain import db


def utcnow():
    """Naive UTC timestamp, comparable with values read back from any backend."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _new_id():
    return str(uuid.uuid4())


class User(db.Model):
    __tablename__ = 'users'
    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    username = db.Column(db.String(150), unique=True, nullable=False)
    password_hash = db.Column(db.String(200), nullable=False)  # Argon2id
    full_name = db.Column(db.String(200), nullable=False)
    totp_secret = db.Column(db.String(64), nullable=True)
    totp_enabled = db.Column(db.Boolean, nullable=False, default=False)
    face_descriptor = db.Column(db.JSON, nullable=True)
    face_enabled = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=utcnow)

    votes = db.relationship('Vote', backref='voter', lazy=True)

    def to_public(self, include_face=False):
        data = {
            'id': self.id,
            'username': self.username,
            'fullName': self.full_name,
            'totpEnabled': bool(self.totp_enabled),
            'faceEnabled': bool(self.face_enabled),
        }
        if include_face:
            data['faceDescriptor'] = self.face_descriptor
        return data

    def __repr__(self):
        return f'<User {self.username}>'


class Election(db.Model):
    __tablename__ = 'elections'
    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    start_date = db.Column(db.DateTime, nullable=False)
    end_date = db.Column(db.DateTime, nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    candidates = db.Column(db.JSON, nullable=False)  # [{id, name, party}]
    created_at = db.Column(db.DateTime, default=utcnow)

    def is_open(self, now=None):
        now = now or utcnow()
        return bool(self.is_active) and self.start_date <= now <= self.end_date

    def candidate_ids(self):
        return [c['id'] for c in self.candidates or []]

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'startDate': self.start_date.isoformat(),
            'endDate': self.end_date.isoformat(),
            'isActive': bool(self.is_active),
            'candidates': self.candidates,
            'createdAt': self.created_at.isoformat() if self.created_at else None,
        }


class Vote(db.Model):
    __tablename__ = 'votes'
    __table_args__ = (
        db.UniqueConstraint('voter_id', 'election_id', name='uq_votes_voter_election'),
    )
    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    voter_id = db.Column(db.String(36), db.ForeignKey('users.id'), nullable=False)
    election_id = db.Column(db.String(36), db.ForeignKey('elections.id'), nullable=False)
    candidate_id = db.Column(db.String(100), nullable=False)
    block_hash = db.Column(db.String(64), nullable=False)
    previous_hash = db.Column(db.String(64), nullable=False)
    nonce = db.Column(db.Integer, nullable=False)
    timestamp = db.Column(db.DateTime, default=utcnow)

    def __repr__(self):
        return f'<Vote {self.id} by User {self.voter_id}>'


class Block(db.Model):
    __tablename__ = 'voting_blocks'
    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    block_number = db.Column(db.Integer, unique=True, nullable=False)
    hash = db.Column(db.String(64), unique=True, nullable=False)
    previous_hash = db.Column(db.String(64), nullable=False)
    votes = db.Column(db.JSON, nullable=False)  # sealed vote payloads
    nonce = db.Column(db.Integer, nullable=False)
    difficulty = db.Column(db.Integer, nullable=False, default=2)  # leading zeros required when sealed
    timestamp = db.Column(db.DateTime, default=utcnow)

    def to_dict(self):
        return {
            'blockNumber': self.block_number,
            'hash': self.hash,
            'previousHash': self.previous_hash,
            'votes': self.votes,
            'nonce': self.nonce,
            'difficulty': self.difficulty,
            'timestamp': self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f'<Block #{self.block_number} {self.hash[:12]}>'
