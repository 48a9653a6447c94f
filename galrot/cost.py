"""Global negative log-likelihood of the catalog for a trial parameter vector."""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from galrot.catalog import Object
from galrot.config import Consts, FitConfig
from galrot.inner import InnerProblem, InnerSolution, solve_inner
from galrot.params import Params


@dataclass
class CostEvaluation:
    """Outcome of one evaluation of the global cost.

    ``solutions`` and ``triples`` are keyed by the catalog index of each
    non-outlier object; ``triples`` is filled only when requested.
    """

    cost: float
    solutions: dict = field(default_factory=dict)
    triples: dict = field(default_factory=dict)

    @property
    def reduced_parallaxes(self) -> dict:
        return {i: s.par_r for i, s in self.solutions.items()}


class GlobalCost:
    """Sum of the per-object terms over the non-outlier objects.

    Each term is ``ln sigma_v + ln sigma_mu_l + ln sigma_mu_b + J(p_r*) / 2``.
    The terms may be computed by a thread pool, but they are always summed in
    catalog order so the result doesn't depend on scheduling.

    Args:
        objects: The catalog. Only ``outlier`` flags are read between calls.
        template: Parameters whose degree fixes the length of the vector.
        consts: Model constants.
        config: Inner-solver policy and worker count.
    """

    def __init__(
        self,
        objects: list[Object],
        template: Params,
        consts: Consts,
        config: Optional[FitConfig] = None,
    ):
        self.objects = objects
        self.template = template
        self.consts = consts
        self.config = config or FitConfig()
        self.n_evaluations = 0

    @property
    def n_params(self) -> int:
        return len(self.template.names)

    def params_at(self, x) -> Params:
        x = np.asarray(x, dtype=np.float64)
        if x.size != self.n_params:
            raise ValueError(f"Expected {self.n_params} parameters, got {x.size}")
        return Params.from_vector(x)

    def _term(self, obj: Object, params: Params) -> tuple:
        problem = InnerProblem.from_object(obj, params, self.consts)
        solution = solve_inner(problem, self.config)
        return problem, solution, problem.log_sigma + 0.5 * solution.cost

    def evaluate(self, x, with_triples: bool = False) -> CostEvaluation:
        """Evaluate the cost at parameter vector *x*."""
        params = self.params_at(x)
        indices = [i for i, obj in enumerate(self.objects) if not obj.outlier]
        selected = [self.objects[i] for i in indices]

        if self.config.workers > 1 and len(selected) > 1:
            with ThreadPoolExecutor(max_workers=self.config.workers) as pool:
                terms = list(pool.map(lambda obj: self._term(obj, params), selected))
        else:
            terms = [self._term(obj, params) for obj in selected]

        # Summed in catalog order
        total = 0.0
        solutions: dict[int, InnerSolution] = {}
        triples = {}
        for i, (problem, solution, term) in zip(indices, terms):
            total += term
            solutions[i] = solution
            if with_triples:
                triples[i] = problem.triples(solution.par_r)

        self.n_evaluations += 1
        return CostEvaluation(cost=float(total), solutions=solutions, triples=triples)

    def __call__(self, x) -> float:
        return self.evaluate(x).cost
