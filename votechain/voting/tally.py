# votechain/voting/tally.py

from collections import Counter

from votechain.database import store
from votechain.errors import ElectionNotFound


def count_votes(votes, candidate_ids=()):
    """Votes per candidate id. Listed candidates start at zero; unlisted ids still count."""
    counts = dict.fromkeys(candidate_ids, 0)
    for cid, n in Counter(v.candidate_id for v in votes).items():
        counts[cid] = counts.get(cid, 0) + n
    return counts


def tally_election(election_id, ledger):
    election = store.get_election(election_id)
    if election is None:
        raise ElectionNotFound()

    votes = store.get_votes(election_id)
    blocks = ledger.blocks()
    return {
        'election': election.to_dict(),
        'results': count_votes(votes, election.candidate_ids()),
        'totalVotes': len(votes),
        'blockchainStats': {
            'totalBlocks': len(blocks),
            'lastBlockHash': blocks[-1].hash if blocks else None,
        },
    }
