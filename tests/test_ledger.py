import hashlib

import pytest

from votechain import db
from votechain.database.models import Block
from votechain.errors import SealingError
from votechain.ledger import chain
from votechain.ledger.chain import (GENESIS_PREVIOUS_HASH, LedgerEngine, compute_fingerprint,
                                    seal_block, sealed_payload)


def vote_payload(voter="user-1", candidate="candidate-1", timestamp="2024-05-01T10:00:00"):
    return {
        'voteId': f"vote-{voter}",
        'voterId': voter,
        'electionId': "election-1",
        'candidateId': candidate,
        'timestamp': timestamp,
    }


@pytest.fixture
def ledger(app):
    return LedgerEngine(difficulty=2)


def append(ledger, payload):
    previous = ledger.latest_block()
    seal = ledger.seal(payload, previous.hash if previous else GENESIS_PREVIOUS_HASH)
    block = ledger.append_block(payload, seal, previous)
    db.session.commit()
    return block


def test_fingerprint_is_deterministic_and_order_independent():
    a = {'voterId': "u", 'electionId': "e", 'nonce': 3}
    b = {'nonce': 3, 'electionId': "e", 'voterId': "u"}
    assert compute_fingerprint(a) == compute_fingerprint(b)
    assert len(compute_fingerprint(a)) == 64
    assert compute_fingerprint(a) != compute_fingerprint(dict(a, nonce=4))


def test_fingerprint_uses_compact_sorted_json():
    expected = hashlib.sha256(b'{"a":1,"b":"x"}').hexdigest()
    assert compute_fingerprint({'b': "x", 'a': 1}) == expected


def test_sealed_payload_ignores_unsealed_fields():
    payload = vote_payload()
    sealed = sealed_payload(payload, "abc", 7)
    assert 'voteId' not in sealed
    assert sealed['previousHash'] == "abc"
    assert sealed['nonce'] == 7


@pytest.mark.parametrize("difficulty", [0, 1, 2, 3])
def test_seal_meets_difficulty(difficulty):
    payload = vote_payload()
    seal = seal_block(payload, GENESIS_PREVIOUS_HASH, difficulty=difficulty)
    assert seal.hash.startswith("0" * difficulty)
    assert seal.nonce >= 1
    assert compute_fingerprint(sealed_payload(payload, GENESIS_PREVIOUS_HASH, seal.nonce)) == seal.hash


def test_seal_starts_at_nonce_one():
    assert seal_block(vote_payload(), "0", difficulty=0).nonce == 1


def test_seal_finds_first_qualifying_nonce():
    payload = vote_payload()
    seal = seal_block(payload, "0", difficulty=2)
    for nonce in range(1, seal.nonce):
        assert not compute_fingerprint(sealed_payload(payload, "0", nonce)).startswith("00")


@pytest.mark.parametrize("difficulty", [-1, 5, 64, "2", True])
def test_seal_rejects_out_of_range_difficulty(difficulty):
    with pytest.raises(ValueError):
        seal_block(vote_payload(), "0", difficulty=difficulty)


def test_seal_attempt_ceiling():
    with pytest.raises(SealingError):
        seal_block(vote_payload(), "0", difficulty=2, max_attempts=0)


def test_engine_rejects_high_difficulty():
    with pytest.raises(ValueError):
        LedgerEngine(difficulty=chain.MAX_DIFFICULTY + 1)


def test_empty_chain(ledger):
    assert ledger.latest_block() is None
    assert ledger.blocks() == []
    assert ledger.verify_chain() is True


def test_genesis_block_links_to_sentinel(ledger):
    block = append(ledger, vote_payload())
    assert block.block_number == 1
    assert block.previous_hash == "0"
    assert block.hash.startswith("00")
    assert block.votes == [vote_payload()]


def test_blocks_link_to_predecessor(ledger):
    first = append(ledger, vote_payload("u1"))
    second = append(ledger, vote_payload("u2"))
    third = append(ledger, vote_payload("u3", candidate="candidate-2"))

    assert [b.block_number for b in ledger.blocks()] == [1, 2, 3]
    assert second.previous_hash == first.hash
    assert third.previous_hash == second.hash
    assert ledger.latest_block().hash == third.hash
    assert ledger.verify_chain() is True
    assert ledger.audit_chain() == []


def test_append_is_staged_until_commit(ledger):
    payload = vote_payload()
    ledger.append_block(payload, ledger.seal(payload, "0"), None)
    db.session.rollback()
    assert ledger.blocks() == []


def test_tampered_vote_is_detected(ledger):
    append(ledger, vote_payload("u1"))
    block = append(ledger, vote_payload("u2"))

    block.votes = [vote_payload("u2", candidate="candidate-3")]
    db.session.commit()

    faults = ledger.audit_chain()
    assert ledger.verify_chain() is False
    assert any("block 2" in f and "contents" in f for f in faults)


def test_broken_link_is_detected(ledger):
    append(ledger, vote_payload("u1"))
    block = append(ledger, vote_payload("u2"))

    block.previous_hash = "f" * 64
    db.session.commit()

    assert any("previous hash" in f for f in ledger.audit_chain())


def test_missing_block_is_detected(ledger):
    append(ledger, vote_payload("u1"))
    middle = append(ledger, vote_payload("u2"))
    append(ledger, vote_payload("u3"))

    db.session.delete(middle)
    db.session.commit()

    faults = ledger.audit_chain()
    assert any("expected block number 2" in f for f in faults)


def test_block_number_and_hash_are_unique(ledger):
    from sqlalchemy.exc import IntegrityError

    block = append(ledger, vote_payload())
    db.session.add(Block(block_number=1, hash="00" + "a" * 62, previous_hash="0",
                         votes=[vote_payload("other")], nonce=1))
    with pytest.raises(IntegrityError):
        db.session.commit()
    db.session.rollback()

    db.session.add(Block(block_number=2, hash=block.hash, previous_hash=block.hash,
                         votes=[vote_payload("other")], nonce=1))
    with pytest.raises(IntegrityError):
        db.session.commit()
    db.session.rollback()


def test_exclusive_holds_the_append_lock(ledger):
    assert not ledger._lock.locked()
    with ledger.exclusive():
        assert ledger._lock.locked()
        assert not ledger._lock.acquire(blocking=False)
    assert not ledger._lock.locked()


def test_engines_share_one_lock_by_default(app):
    assert LedgerEngine()._lock is LedgerEngine(difficulty=1)._lock


def test_block_records_its_sealing_difficulty(app):
    block = append(LedgerEngine(difficulty=1), vote_payload())
    assert block.difficulty == 1
    assert block.to_dict()['difficulty'] == 1


def test_raising_difficulty_keeps_earlier_blocks_valid(app):
    append(LedgerEngine(difficulty=1), vote_payload("u1"))
    harder = LedgerEngine(difficulty=3)
    append(harder, vote_payload("u2"))

    blocks = harder.blocks()
    assert [b.difficulty for b in blocks] == [1, 3]
    assert blocks[1].hash.startswith("000")
    assert harder.verify_chain() is True
    assert LedgerEngine(difficulty=0).verify_chain() is True


def test_hash_below_recorded_difficulty_is_detected(app):
    block = append(LedgerEngine(difficulty=1), vote_payload())
    block.difficulty = 4
    db.session.commit()

    faults = LedgerEngine(difficulty=1).audit_chain()
    if block.hash.startswith("0000"):
        assert faults == []
    else:
        assert any("does not meet difficulty 4" in f for f in faults)


def test_invalid_recorded_difficulty_is_detected(ledger):
    block = append(ledger, vote_payload())
    block.difficulty = 9
    db.session.commit()
    assert any("invalid recorded difficulty" in f for f in ledger.audit_chain())
