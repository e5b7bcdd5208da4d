# votechain/voting/orchestrator.py

# Turns "user U votes for candidate C in election E" into one sealed block.
# Checks run in a fixed order and the first failure wins. Everything from the
# duplicate-vote check to the commit runs under the ledger's append lock, and
# the vote and its block are committed in one transaction.

import logging
import uuid
from collections import namedtuple

from sqlalchemy.exc import IntegrityError

from votechain import db
from votechain.database import store
from votechain.database.models import Vote, utcnow
from votechain.errors import (CandidateNotFound, DuplicateVote, ElectionInactive, ElectionNotFound,
                              FaceRequired, FactorsIncomplete, LedgerConflict, TotpRequired)
from votechain.ledger.chain import GENESIS_PREVIOUS_HASH
from votechain.security.token_manager import ALL_FACTORS

logger = logging.getLogger(__name__)

VoteReceipt = namedtuple('VoteReceipt', ['block_hash', 'block_number', 'vote_id', 'previous_hash', 'nonce'])


class VoteCaster:
    def __init__(self, ledger, audit_logger=None):
        self.ledger = ledger
        self.audit_logger = audit_logger

    def _audit(self, category, action, data, user_id):
        if self.audit_logger:
            self.audit_logger.log_security_event(category, action, data, user_id=user_id)

    def check_eligibility(self, user, election_id, candidate_id, factors):
        """Run the checks that need no lock; return the election."""
        if not user.totp_enabled:
            raise TotpRequired()
        if not user.face_enabled:
            raise FaceRequired()
        missing = [f for f in ALL_FACTORS if f not in set(factors)]
        if missing:
            raise FactorsIncomplete(f"Token lacks verified factors: {', '.join(missing)}",
                                    missingFactors=missing)

        election = store.get_election(election_id)
        if election is None:
            raise ElectionNotFound()
        if not election.is_open():
            raise ElectionInactive()
        if candidate_id not in election.candidate_ids():
            raise CandidateNotFound()
        return election

    def cast_vote(self, user, election_id, candidate_id, factors):
        self.check_eligibility(user, election_id, candidate_id, factors)

        with self.ledger.exclusive():
            if store.has_voted(user.id, election_id):
                self._reject_duplicate(user, election_id)

            previous_block = self.ledger.latest_block()
            previous_hash = previous_block.hash if previous_block else GENESIS_PREVIOUS_HASH

            timestamp = utcnow()
            vote_id = str(uuid.uuid4())
            payload = {
                'voteId': vote_id,
                'voterId': user.id,
                'electionId': election_id,
                'candidateId': candidate_id,
                'timestamp': timestamp.isoformat(),
            }
            seal = self.ledger.seal(payload, previous_hash)

            vote = Vote(
                id=vote_id,
                voter_id=user.id,
                election_id=election_id,
                candidate_id=candidate_id,
                block_hash=seal.hash,
                previous_hash=previous_hash,
                nonce=seal.nonce,
                timestamp=timestamp,
            )
            db.session.add(vote)
            block = self.ledger.append_block(payload, seal, previous_block)
            try:
                db.session.commit()
            except IntegrityError:
                db.session.rollback()
                # another writer (possibly another process) got there first
                if store.has_voted(user.id, election_id):
                    self._reject_duplicate(user, election_id)
                logger.warning("Block %d collided with a concurrent append", block.block_number)
                raise LedgerConflict()

        self._audit("database", "vote_created", {
            "electionId": election_id,
            "blockchain": {
                "hash": seal.hash,
                "blockNumber": block.block_number,
                "previousHash": previous_hash,
            },
        }, user.id)
        return VoteReceipt(seal.hash, block.block_number, vote_id, previous_hash, seal.nonce)

    def _reject_duplicate(self, user, election_id):
        self._audit("fraud", "double_voting", {"electionId": election_id}, user.id)
        raise DuplicateVote()
