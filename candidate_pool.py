from engine_errors import EmptyCandidatePoolError
from inference.confidence import rank_candidates
from inference.weight_update import normalize


class CandidatePool:
    """
    Per-session item-id -> probability map.

    Every gated item keeps a weight for the whole session. Items whose
    probability falls under `prune_epsilon` drop out of the active pool used
    for question selection, but they stay here so FAIL_LIST and undo can
    still see them.
    """

    def __init__(self, weights, prune_epsilon=1e-9):
        self.prune_epsilon = prune_epsilon
        self.weights = normalize(dict(weights))

    @classmethod
    def from_catalog(cls, catalog, ai_gate_choice, config):
        priors = catalog.load_candidate_pool(ai_gate_choice, config.alpha)
        if not priors:
            raise EmptyCandidatePoolError(f"AI gate choice {ai_gate_choice} left no candidates")
        return cls(priors, prune_epsilon=config.prune_epsilon)

    def __len__(self):
        return len(self.weights)

    def active_ids(self):
        return [item_id for item_id, p in self.weights.items() if p >= self.prune_epsilon]

    def ranked(self, limit=None):
        return rank_candidates(self.weights, limit=limit)

    def replace(self, weights):
        self.weights = normalize(dict(weights))

    def snapshot(self):
        return dict(self.weights)

    def restore(self, snapshot):
        self.weights = dict(snapshot)
