# votechain/authentication/face.py

# Third factor: compare a captured face descriptor with the enrolled one.
# Scoring is pluggable; anything with `score(a, b) -> distance` can replace
# the Euclidean default without touching the gate or the vote orchestrator.

from collections import namedtuple

import numpy as np

DEFAULT_MATCH_THRESHOLD = 0.6
MIN_DESCRIPTOR_LENGTH = 128

FaceMatch = namedtuple('FaceMatch', ['is_match', 'distance', 'confidence'])


class FaceScorer:
    """Distance between two descriptors; lower means more alike."""

    def score(self, a, b) -> float:
        raise NotImplementedError


class EuclideanFaceScorer(FaceScorer):
    def score(self, a, b) -> float:
        return float(np.linalg.norm(np.asarray(a, dtype=float) - np.asarray(b, dtype=float)))


class FaceMatcher:
    def __init__(self, scorer=None, threshold=DEFAULT_MATCH_THRESHOLD):
        self.scorer = scorer or EuclideanFaceScorer()
        self.threshold = threshold

    def compare(self, captured, enrolled):
        if captured is None or enrolled is None or len(captured) != len(enrolled):
            return FaceMatch(False, float('inf'), 0)
        distance = self.scorer.score(captured, enrolled)
        confidence = round(max(0.0, (1 - distance) * 100))
        return FaceMatch(distance < self.threshold, distance, confidence)
