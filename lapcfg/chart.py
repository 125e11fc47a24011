"""Charts constrained to the spans of a gold tree.

A :class:`ConstrainingChart` is built once per gold tree. It records the open
cells (the spans of constituents), for each cell the unary chain of base
categories occupying it from top to bottom, and how cells combine.

A :class:`ConstrainedChart` holds inside and outside log probabilities for
the split variants of those categories under a particular
:class:`lapcfg.sparse.SparseMatrixGrammar`. Since each open cell has a single
binarization-fixed midpoint and a fixed unary chain, the passes visit exactly
``2n - 1`` cells for a sentence of ``n`` words.

>>> from lapcfg.tree import Tree
>>> from lapcfg.vocabulary import Vocabulary, Lexicon
>>> tree = Tree('(S (A x) (B (A y)))')
>>> chart = ConstrainingChart(tree, Vocabulary(['S', 'A', 'B']),
...		Lexicon(['x', 'y']))
>>> len(chart), chart.cells
(3, [(0, 1), (1, 2), (0, 2)])
>>> chart.chains
[(1,), (2, 1), (0,)]
"""
from collections import defaultdict
import numpy as np
from scipy.special import logsumexp
from roaringbitmap import RoaringBitmap
from .tree import Tree, isbinarized
from .counts import SentenceCounts
from .util import logmaxarg


class ParseFailure(Exception):
	"""Raised when a gold tree has zero probability under a grammar."""


class ConstrainingChart(object):
	"""The open cells of a binarized gold tree.

	:param tree: a binarized Tree with words as leaves.
	:param vocabulary: the Vocabulary whose base categories are used as ids.
	:param lexicon: the Lexicon for the words.
	:raises ValueError: if the tree is not binarized or contains an unknown
		label or word.

	Attributes (lists are indexed by cell number):

	:cells: list of ``(start, end)`` tuples, ordered by span length and start
		position; the last cell is the root.
	:index: dict mapping each ``(start, end)`` span to its cell number.
	:chains: tuple of base category ids per cell, top to bottom.
	:children: ``(leftcell, rightcell)``, or None for a lexical cell.
	:parent: the cell number of the parent cell, or -1 for the root.
	"""

	def __init__(self, tree, vocabulary, lexicon):
		if not isbinarized(tree):
			raise ValueError('tree is not binarized: %s' % tree)
		self.baselabels = vocabulary.baselabels
		self.sent = tree.leaves()
		self.tokens = [lexicon.index(word) for word in self.sent]
		spans = {}
		self._walk(tree, 0, vocabulary, spans)
		self.cells = sorted(spans, key=lambda span: (span[1] - span[0],
				span[0]))
		self.index = index = {span: n for n, span in enumerate(self.cells)}
		self.chains = [spans[span][0] for span in self.cells]
		self.midpoints = [spans[span][1] for span in self.cells]
		self.children = [None] * len(self.cells)
		self.parent = [-1] * len(self.cells)
		for n, (start, end) in enumerate(self.cells):
			mid = self.midpoints[n]
			if mid is not None:
				left, right = index[start, mid], index[mid, end]
				self.children[n] = left, right
				self.parent[left] = self.parent[right] = n
		self.opencells = RoaringBitmap(sorted(
				self.cellindex(start, end) for start, end in self.cells))
		assert len(self.cells) == 2 * len(self.sent) - 1

	def _walk(self, node, start, vocabulary, spans):
		"""Collect the unary chain and midpoint of each span; return end."""
		chain = []
		while True:
			chain.append(vocabulary.baseindex(node.label))
			if node.ispreterminal():
				end, mid = start + 1, None
				break
			elif len(node) == 1:
				node = node[0]
			else:
				mid = self._walk(node[0], start, vocabulary, spans)
				end = self._walk(node[1], mid, vocabulary, spans)
				break
		spans[start, end] = tuple(chain), mid
		return end

	def __len__(self):
		return len(self.cells)

	@property
	def root(self):
		"""Cell number of the root cell."""
		return len(self.cells) - 1

	def cellindex(self, start, end):
		"""A unique integer for a span of this sentence."""
		return start * (len(self.sent) + 1) + end

	def isopen(self, start, end):
		"""True if ``(start, end)`` is the span of a constituent."""
		return self.cellindex(start, end) in self.opencells

	def licensed(self, start, end, vocabulary):
		"""Return the ids licensed at a span under a (split) vocabulary, as a
		list with a range of ids for each level of the unary chain."""
		if not self.isopen(start, end):
			return []
		chain = self.chains[self.index[start, end]]
		return [vocabulary.variants(base) for base in chain]


class ConstrainedChart(object):
	"""Inside-outside computations over the cells of a ConstrainingChart.

	Probabilities are kept in log space; for each cell, a list with an array
	per level of the unary chain holding a value per licensed variant.

	:param constraining: a ConstrainingChart.
	:param grammar: a SparseMatrixGrammar with the same base categories.
	:raises ValueError: if the base categories of the grammar differ from
		those of the constraining chart."""

	def __init__(self, constraining, grammar):
		if constraining.baselabels != grammar.vocabulary.baselabels:
			raise ValueError('vocabulary of grammar does not match that of '
					'constraining chart.')
		self.constraining = constraining
		self.grammar = grammar
		self.insideprobs = self.outsideprobs = None
		self.loglikelihood = None

	def _binaryblock(self, cell):
		chains = self.constraining.chains
		left, right = self.constraining.children[cell]
		return self.grammar.binaryblock(chains[cell][-1], chains[left][0],
				chains[right][0])

	def _lexicalblock(self, cell):
		start, _ = self.constraining.cells[cell]
		return self.grammar.lexicalblock(self.constraining.chains[cell][-1],
				self.constraining.tokens[start])

	def inside(self):
		"""Compute inside probabilities bottom-up.

		:returns: the log probability of the gold tree, summed over all
			variant annotations.
		:raises ParseFailure: if the tree has zero probability."""
		chart = self.constraining
		inside = [None] * len(chart)
		for cell, chain in enumerate(chart.chains):
			probs = [None] * len(chain)
			if chart.children[cell] is None:
				probs[-1] = self._lexicalblock(cell)[0]
			else:
				left, right = chart.children[cell]
				logprob, _ = self._binaryblock(cell)
				probs[-1] = logsumexp(logprob
						+ inside[left][0][None, :, None]
						+ inside[right][0][None, None, :], axis=(1, 2))
			for level in range(len(chain) - 2, -1, -1):
				logprob, _ = self.grammar.unaryblock(
						chain[level], chain[level + 1])
				probs[level] = logsumexp(
						logprob + probs[level + 1][None, :], axis=1)
			inside[cell] = probs
		self.insideprobs = inside
		self.loglikelihood = logsumexp(inside[chart.root][0])
		if not np.isfinite(self.loglikelihood):
			raise ParseFailure('gold tree is not derivable: %s'
					% ' '.join(chart.sent))
		return self.loglikelihood

	def outside(self):
		"""Compute outside probabilities top-down; runs inside() if needed.
		"""
		if self.insideprobs is None:
			self.inside()
		chart, inside = self.constraining, self.insideprobs
		outside = [None] * len(chart)
		for cell in range(len(chart) - 1, -1, -1):
			chain = chart.chains[cell]
			probs = [None] * len(chain)
			parent = chart.parent[cell]
			if parent == -1:
				probs[0] = np.zeros(len(inside[cell][0]))
			else:
				left, right = chart.children[parent]
				logprob, _ = self._binaryblock(parent)
				parentout = outside[parent][-1][:, None, None]
				if cell == left:
					probs[0] = logsumexp(parentout + logprob
							+ inside[right][0][None, None, :], axis=(0, 2))
				else:
					probs[0] = logsumexp(parentout + logprob
							+ inside[left][0][None, :, None], axis=(0, 1))
			for level in range(1, len(chain)):
				logprob, _ = self.grammar.unaryblock(
						chain[level - 1], chain[level])
				probs[level] = logsumexp(
						probs[level - 1][:, None] + logprob, axis=0)
			outside[cell] = probs
		self.outsideprobs = outside
		return outside

	def counts(self):
		"""Expected rule counts of this sentence.

		:returns: a SentenceCounts object."""
		if self.outsideprobs is None:
			self.outside()
		chart, grammar = self.constraining, self.grammar
		inside, outside = self.insideprobs, self.outsideprobs
		logz = self.loglikelihood
		result = {'bin': ([], []), 'un': ([], []), 'lex': ([], [])}

		def collect(kind, logcounts, ruleidx):
			mask = ruleidx != -1
			result[kind][0].append(ruleidx[mask])
			result[kind][1].append(np.exp(logcounts[mask] - logz))

		for cell, chain in enumerate(chart.chains):
			if chart.children[cell] is None:
				logprob, ruleidx = self._lexicalblock(cell)
				collect('lex', outside[cell][-1] + logprob, ruleidx)
			else:
				left, right = chart.children[cell]
				logprob, ruleidx = self._binaryblock(cell)
				collect('bin', outside[cell][-1][:, None, None] + logprob
						+ inside[left][0][None, :, None]
						+ inside[right][0][None, None, :], ruleidx)
			for level in range(len(chain) - 1):
				logprob, ruleidx = grammar.unaryblock(
						chain[level], chain[level + 1])
				collect('un', outside[cell][level][:, None] + logprob
						+ inside[cell][level + 1][None, :], ruleidx)
		arrays = []
		for kind in ('bin', 'un', 'lex'):
			idx, val = result[kind]
			arrays.append(np.concatenate(idx) if idx
					else np.zeros(0, dtype=np.int64))
			arrays.append(np.concatenate(val) if val else np.zeros(0))
		return SentenceCounts(*arrays)

	def viterbi(self):
		"""Return the best annotation of the gold tree.

		For each cell, the best variant and for binary cells the best pair of
		child variants are selected by Viterbi (max) inside probability; ties
		are broken by lowest id. Every nonterminal label carries the sub-index
		of its variant, e.g., ``NP_1``.

		:returns: a tuple ``(tree, logprob)``.
		:raises ParseFailure: if the tree has zero probability."""
		chart = self.constraining
		scores = [None] * len(chart)
		backptrs = [None] * len(chart)
		for cell, chain in enumerate(chart.chains):
			probs = [None] * len(chain)
			bps = [None] * len(chain)
			if chart.children[cell] is None:
				probs[-1] = self._lexicalblock(cell)[0]
			else:
				left, right = chart.children[cell]
				logprob, _ = self._binaryblock(cell)
				cand = (logprob + scores[left][0][None, :, None]
						+ scores[right][0][None, None, :]).reshape(
							logprob.shape[0], -1)
				bps[-1] = np.argmax(cand, axis=1)
				probs[-1] = cand[np.arange(cand.shape[0]), bps[-1]]
			for level in range(len(chain) - 2, -1, -1):
				logprob, _ = self.grammar.unaryblock(
						chain[level], chain[level + 1])
				cand = logprob + probs[level + 1][None, :]
				bps[level] = np.argmax(cand, axis=1)
				probs[level] = cand[np.arange(cand.shape[0]), bps[level]]
			scores[cell], backptrs[cell] = probs, bps
		logprob, best = logmaxarg(scores[chart.root][0])
		if not np.isfinite(logprob):
			raise ParseFailure('gold tree is not derivable: %s'
					% ' '.join(chart.sent))
		return self._buildtree(chart.root, 0, best, backptrs), logprob

	def _buildtree(self, cell, level, variant, backptrs):
		"""Reconstruct the tree rooted at a level of a cell."""
		chart = self.constraining
		chain = chart.chains[cell]
		vocab = self.grammar.vocabulary
		label = vocab.annotated(vocab.first[chain[level]] + variant)
		if level < len(chain) - 1:
			return Tree(label, [self._buildtree(cell, level + 1,
					backptrs[cell][level][variant], backptrs)])
		if chart.children[cell] is None:
			return Tree(label, [chart.sent[chart.cells[cell][0]]])
		left, right = chart.children[cell]
		nright = vocab.count[chart.chains[right][0]]
		leftvariant, rightvariant = divmod(
				int(backptrs[cell][level][variant]), int(nright))
		return Tree(label, [
				self._buildtree(left, 0, leftvariant, backptrs),
				self._buildtree(right, 0, rightvariant, backptrs)])

	def mergeloss(self, pairs, logsplitfraction):
		"""Approximate loss in log likelihood of merging each pair of variants.

		For every occurrence of a category in the tree, compares the posterior
		probability of the tree with the pair of variants merged, where the
		merged inside probability is the mixture of the two variants weighted
		by their relative frequency.

		:param pairs: sequence of ``(id1, id2)`` tuples; both ids must be
			variants of the same category.
		:param logsplitfraction: array with for each id the log of its
			relative frequency with respect to its pair.
		:returns: array with the loss for each pair; higher means merging the
			pair is more costly."""
		if self.outsideprobs is None:
			self.outside()
		chart, vocab = self.constraining, self.grammar.vocabulary
		bybase = defaultdict(list)
		for n, (a, b) in enumerate(pairs):
			bybase[vocab.base[a]].append((n, a, b))
		loss = np.zeros(len(pairs))
		for cell, chain in enumerate(chart.chains):
			for level, base in enumerate(chain):
				if base not in bybase:
					continue
				first = vocab.first[base]
				ins = self.insideprobs[cell][level]
				outs = self.outsideprobs[cell][level]
				posterior = ins + outs
				total = logsumexp(posterior)
				if not np.isfinite(total):
					continue
				for n, a, b in bybase[base]:
					i, j = a - first, b - first
					merged = (np.logaddexp(logsplitfraction[a] + ins[i],
							logsplitfraction[b] + ins[j])
							+ np.logaddexp(outs[i], outs[j]))
					rest = np.delete(posterior, [i, j])
					loss[n] += total - logsumexp(np.append(rest, merged))
		return loss


__all__ = ['ParseFailure', 'ConstrainingChart', 'ConstrainedChart']
