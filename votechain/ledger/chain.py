# votechain/ledger/chain.py

# Hash-chain ledger: fingerprints, proof-of-work sealing and append-only
# blocks. One vote per block. Block N links to block N-1 by hash; block 1
# links to GENESIS_PREVIOUS_HASH.

import hashlib
import json
import logging
import threading
from collections import namedtuple
from contextlib import contextmanager

from votechain import db
from votechain.database.models import Block
from votechain.errors import SealingError

logger = logging.getLogger(__name__)

GENESIS_PREVIOUS_HASH = "0"
DEFAULT_DIFFICULTY = 2
MAX_DIFFICULTY = 4
DEFAULT_MAX_ATTEMPTS = 5_000_000

# Fields of a vote payload covered by the fingerprint, besides previousHash and nonce.
SEALED_FIELDS = ('voterId', 'electionId', 'candidateId', 'timestamp')

# Single writer for chain extension within this process.
_APPEND_LOCK = threading.Lock()

Seal = namedtuple('Seal', ['hash', 'nonce', 'difficulty'])


def compute_fingerprint(payload):
    """SHA-256 hex digest of the canonical JSON form of `payload`."""
    canonical = json.dumps(payload, sort_keys=True, separators=(',', ':'), ensure_ascii=False)
    return hashlib.sha256(canonical.encode('utf-8')).hexdigest()


def sealed_payload(vote_payload, previous_hash, nonce):
    data = {field: vote_payload[field] for field in SEALED_FIELDS}
    data['previousHash'] = previous_hash
    data['nonce'] = nonce
    return data


def check_difficulty(difficulty):
    if not isinstance(difficulty, int) or isinstance(difficulty, bool):
        raise ValueError("difficulty must be an integer")
    if difficulty < 0 or difficulty > MAX_DIFFICULTY:
        raise ValueError(f"difficulty must be between 0 and {MAX_DIFFICULTY}")
    return difficulty


def seal_block(vote_payload, previous_hash, difficulty=DEFAULT_DIFFICULTY,
               max_attempts=DEFAULT_MAX_ATTEMPTS):
    """Find the first nonce >= 1 whose fingerprint starts with `difficulty` zeros."""
    check_difficulty(difficulty)
    target = '0' * difficulty
    nonce = 0
    while nonce < max_attempts:
        nonce += 1
        digest = compute_fingerprint(sealed_payload(vote_payload, previous_hash, nonce))
        if digest.startswith(target):
            return Seal(digest, nonce, difficulty)
    raise SealingError(f"No seal found within {max_attempts} attempts at difficulty {difficulty}")


class LedgerEngine:
    def __init__(self, difficulty=DEFAULT_DIFFICULTY, max_attempts=DEFAULT_MAX_ATTEMPTS,
                 lock=None):
        self.difficulty = check_difficulty(difficulty)
        self.max_attempts = max_attempts
        self._lock = lock or _APPEND_LOCK

    @contextmanager
    def exclusive(self):
        """Hold the append lock. Read-latest-then-append must happen inside it."""
        with self._lock:
            yield self

    def seal(self, vote_payload, previous_hash):
        seal = seal_block(vote_payload, previous_hash, self.difficulty, self.max_attempts)
        logger.debug("Sealed vote at nonce %d: %s", seal.nonce, seal.hash)
        return seal

    def latest_block(self):
        return db.session.query(Block).order_by(Block.block_number.desc()).first()

    def blocks(self):
        return db.session.query(Block).order_by(Block.block_number).all()

    def append_block(self, vote_payload, seal, previous_block):
        """Stage the block sealing `vote_payload` on top of `previous_block`.

        The block is added to the session but not committed, so the caller can
        commit it together with the vote it seals.
        """
        if previous_block is None:
            block_number, previous_hash = 1, GENESIS_PREVIOUS_HASH
        else:
            block_number, previous_hash = previous_block.block_number + 1, previous_block.hash
        block = Block(
            block_number=block_number,
            hash=seal.hash,
            previous_hash=previous_hash,
            votes=[dict(vote_payload)],
            nonce=seal.nonce,
            difficulty=seal.difficulty,
        )
        db.session.add(block)
        return block

    def audit_chain(self):
        """Return a list of human-readable faults; empty when the chain is sound."""
        faults = []
        previous = None
        for block in self.blocks():
            expected_number = 1 if previous is None else previous.block_number + 1
            expected_previous = GENESIS_PREVIOUS_HASH if previous is None else previous.hash
            if block.block_number != expected_number:
                faults.append(f"block {block.block_number}: expected block number {expected_number}")
            if block.previous_hash != expected_previous:
                faults.append(f"block {block.block_number}: previous hash does not link to its predecessor")
            if len(block.votes or []) != 1:
                faults.append(f"block {block.block_number}: expected exactly one sealed vote")
            else:
                try:
                    recomputed = compute_fingerprint(
                        sealed_payload(block.votes[0], block.previous_hash, block.nonce))
                except KeyError as e:
                    faults.append(f"block {block.block_number}: sealed vote is missing {e}")
                else:
                    if recomputed != block.hash:
                        faults.append(f"block {block.block_number}: hash does not match its contents")
            # each block is held to the difficulty it was sealed at
            if not isinstance(block.difficulty, int) or not 0 <= block.difficulty <= MAX_DIFFICULTY:
                faults.append(f"block {block.block_number}: invalid recorded difficulty {block.difficulty!r}")
            elif not block.hash.startswith('0' * block.difficulty):
                faults.append(f"block {block.block_number}: hash does not meet difficulty {block.difficulty}")
            previous = block
        return faults

    def verify_chain(self):
        return not self.audit_chain()
