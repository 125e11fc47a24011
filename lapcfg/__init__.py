"""Split/merge training of latent-annotation PCFGs.

Modules:

- tree: bracketed tree reading and writing
- vocabulary: split nonterminal vocabulary & lexicon
- counts: exact and fractional rule counts
- grammar: production-list grammars, split/merge, grammar files
- sparse: compiled sparse-matrix grammars
- chart: gold-constrained inside-outside charts
- trainer: EM and the split/merge cycle
- cli: command-line interface
"""

__version__ = '0.1.0'
