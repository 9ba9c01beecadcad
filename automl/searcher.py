import random
from collections import deque
from typing import Dict, Optional, Tuple

from automl.search_space import (DEFAULT_SEARCH_SPACE, architecture_key, make_hyperparameters,
                                 random_specify, space_size)


class Searcher:
    """Abstract base class from which new searchers should inherit from.

    A searcher samples architectures from a search space (a dict of
    hyperparameter name -> candidate values). After a sampled architecture
    has been evaluated, `update` feeds its score back so that future samples
    can be more informed.

    Args:
        space (dict[str, list]): Candidate values per hyperparameter.
        seed (int): Seed for the searcher's private random generator.
    """

    def __init__(self, space: Optional[Dict] = None, seed: Optional[int] = None):
        self.space = space or DEFAULT_SEARCH_SPACE
        self.rng = random.Random(seed)

    def sample(self) -> Tuple[Dict, Dict]:
        """Returns an architecture from the search space.

        Returns:
            (dict, dict): The architecture (hyperparameter name -> value) and
            a searcher evaluation token that, combined with the evaluation
            result, is sufficient for the searcher to update its state.
        """
        raise NotImplementedError

    def update(self, val: float, searcher_eval_token: Dict):
        """Updates the state of the searcher with the score `val` of the
        architecture identified by `searcher_eval_token`. Higher is better.
        """
        raise NotImplementedError


class RandomSearcher(Searcher):
    """Uniform sampling; avoids architectures it has already proposed while possible."""

    def __init__(self, space: Optional[Dict] = None, seed: Optional[int] = None, max_attempts: int = 100):
        Searcher.__init__(self, space, seed)
        self.max_attempts = max_attempts
        self.seen = set()

    def sample(self):
        exhausted = len(self.seen) >= space_size(self.space)
        for _ in range(self.max_attempts):
            arch = random_specify(self.space, self.rng)
            key = architecture_key(arch)
            if exhausted or key not in self.seen:
                break
        self.seen.add(key)
        return arch, {'key': key, 'arch': arch}

    def update(self, val, searcher_eval_token):
        pass


class EvolutionSearcher(Searcher):
    """Regularized evolution (Real et al. '19).

    The first `P` samples are random. Afterwards a tournament of `S` members
    is drawn from the population, the best one is copied with a single
    hyperparameter changed, and (when `regularized`) the oldest member is
    dropped once the population is full; otherwise the weakest is.

    Args:
        P (int): Population size.
        S (int): Tournament sample size.
    """

    def __init__(self, space: Optional[Dict] = None, P: int = 10, S: int = 3,
                 regularized: bool = True, seed: Optional[int] = None):
        Searcher.__init__(self, space, seed)
        if P < 1 or S < 1:
            raise ValueError(f"Population and sample sizes must be positive, got P={P}, S={S}")
        self.P = P
        self.S = S
        self.regularized = regularized
        self.population: deque = deque()
        self.num_sampled = 0

    def _mutate(self, arch: Dict) -> Dict:
        hyperps = make_hyperparameters(self.space)
        candidates = sorted(name for name, h in hyperps.items() if h.is_mutatable())
        if not candidates:
            return dict(arch)

        name = candidates[self.rng.randrange(len(candidates))]
        options = [v for v in hyperps[name].vs if v != arch[name]]
        child = dict(arch)
        child[name] = options[self.rng.randrange(len(options))]
        for other, h in hyperps.items():
            h.assign_value(child[other])
        return {other: h.get_value() for other, h in hyperps.items()}

    def sample(self):
        self.num_sampled += 1
        if len(self.population) < self.P:
            arch = random_specify(self.space, self.rng)
            return arch, {'parent': None, 'arch': arch}

        tournament = self.rng.sample(list(self.population), min(self.S, len(self.population)))
        parent_arch, _ = max(tournament, key=lambda member: member[1])
        child = self._mutate(parent_arch)
        return child, {'parent': architecture_key(parent_arch), 'arch': child}

    def update(self, val, searcher_eval_token):
        arch = searcher_eval_token['arch']
        self.population.append((arch, val))
        if len(self.population) > self.P:
            if self.regularized:
                # Aging: the oldest member dies regardless of fitness
                self.population.popleft()
            else:
                weakest = min(range(len(self.population)), key=lambda i: self.population[i][1])
                del self.population[weakest]

    def best(self) -> Optional[Tuple[Dict, float]]:
        if not self.population:
            return None
        return max(self.population, key=lambda member: member[1])


SEARCHERS = {
    'random': RandomSearcher,
    'evolution': EvolutionSearcher,
}


def get_searcher(name: str, space: Optional[Dict] = None, seed: Optional[int] = None) -> Searcher:
    if name not in SEARCHERS:
        raise ValueError(f"Unknown searcher '{name}'. Choose from {sorted(SEARCHERS)}")
    return SEARCHERS[name](space=space, seed=seed)
