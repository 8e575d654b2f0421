"""Evolution — the generational loop over Oak Architecture agents.

- OakEvolutionLoop: the loop driver (oak cycle, operators, evaluation, selection)
- operators: mutation, crossover, elitism and tournament selection
- fitness: pluggable evaluators and the synthetic rollout harness
- metrics: per-generation records and the convergence signal
"""
