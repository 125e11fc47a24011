"""Compiled, index-based grammars for the inside-outside engine.

A :class:`SparseMatrixGrammar` stores the rules of a production-list grammar
in sorted numpy arrays:

- binary rules sorted by (parent, left child, right child), with a table of
  offsets per parent and a column of packed child pairs;
- unary rules sorted by (parent, child);
- lexical rules sorted by (word, parent).

Child pairs of binary rules are packed into dense column indices by a
:class:`PackingFunction`, a bijection between the sorted distinct
(left, right) pairs occurring in the grammar and ``0..n-1``."""
import numpy as np


class PackingFunction(object):
	"""A collision-free mapping of (left, right) child pairs to dense indices.

	Only pairs occurring in the grammar are packed; the order of indices
	follows the numeric order of (left, right).

	>>> pf = PackingFunction([3, 1, 1], [0, 2, 2], 4)
	>>> len(pf), pf.pack(1, 2), pf.pack(3, 0), pf.pack(2, 2)
	(2, 0, 1, -1)
	>>> pf.unpack(1)
	(3, 0)
	"""

	def __init__(self, left, right, nsymbols):
		self.nsymbols = nsymbols
		self.keys = np.unique(np.asarray(left, dtype=np.int64) * nsymbols
				+ np.asarray(right, dtype=np.int64))
		self.keys.flags.writeable = False

	def __len__(self):
		return len(self.keys)

	def pack(self, left, right):
		"""Return index of child pair, or -1 if it does not occur."""
		key = left * self.nsymbols + right
		idx = int(np.searchsorted(self.keys, key))
		if idx < len(self.keys) and self.keys[idx] == key:
			return idx
		return -1

	def packarray(self, left, right):
		"""Vectorized version of pack()."""
		key = (np.asarray(left, dtype=np.int64) * self.nsymbols
				+ np.asarray(right, dtype=np.int64))
		idx = np.searchsorted(self.keys, key)
		found = idx < len(self.keys)
		found[found] = self.keys[idx[found]] == key[found]
		return np.where(found, idx, -1)

	def unpack(self, idx):
		"""Return the (left, right) pair for a packed index."""
		left, right = divmod(int(self.keys[idx]), self.nsymbols)
		return left, right


class SparseMatrixGrammar(object):
	"""Compiled form of a :class:`lapcfg.grammar.ProductionListGrammar`.

	Immutable after construction; the dense per-category blocks returned by
	``binaryblock()`` etc. are memoized.

	:param grammar: a ProductionListGrammar.
	:raises ValueError: if the grammar contains duplicate rules."""

	def __init__(self, grammar):
		self.vocabulary = grammar.vocabulary
		self.lexicon = grammar.lexicon
		self.ancestor = grammar.ancestor
		nsym = len(self.vocabulary)

		parent, left, right, prob = _columns(grammar.binary, 4)
		order = np.lexsort((right, left, parent))
		self.binparent, self.binleft, self.binright, self.binprob = (
				parent[order], left[order], right[order], prob[order])
		_checkunique('binary', self.binparent, self.binleft, self.binright)
		self.packing = PackingFunction(self.binleft, self.binright, nsym)
		self.binpacked = self.packing.packarray(self.binleft, self.binright)
		self.binoffsets = np.searchsorted(self.binparent, np.arange(nsym + 1))

		parent, child, _, prob = _columns(grammar.unary, 4)
		order = np.lexsort((child, parent))
		self.unparent, self.unchild, self.unprob = (
				parent[order], child[order], prob[order])
		_checkunique('unary', self.unparent, self.unchild)
		self.unoffsets = np.searchsorted(self.unparent, np.arange(nsym + 1))

		parent, word, _, prob = _columns(grammar.lexical, 4)
		order = np.lexsort((parent, word))
		self.lexparent, self.lexword, self.lexprob = (
				parent[order], word[order], prob[order])
		_checkunique('lexical', self.lexword, self.lexparent)
		self.lexoffsets = np.searchsorted(
				self.lexword, np.arange(len(self.lexicon) + 1))

		for arr in (self.binparent, self.binleft, self.binright, self.binprob,
				self.binpacked, self.binoffsets, self.unparent, self.unchild,
				self.unprob, self.unoffsets,
				self.lexparent, self.lexword, self.lexprob, self.lexoffsets):
			arr.flags.writeable = False
		self._binaryblocks = {}
		self._unaryblocks = {}
		self._lexicalblocks = {}

	def __repr__(self):
		return '%s(%d symbols, %d binary, %d unary, %d lexical rules)' % (
				self.__class__.__name__, len(self.vocabulary),
				len(self.binprob), len(self.unprob), len(self.lexprob))

	def binaryrange(self, parent, left):
		"""Return ``(start, end)`` such that rules ``start..end-1`` are exactly
		the binary rules with the given parent and left child."""
		start, _ = self.parentrange(parent, left)
		end, _ = self.parentrange(parent, left + 1)
		return start, end

	def parentrange(self, parent, minleft=0):
		"""Return ``(start, end)`` covering the binary rules of ``parent``
		whose left child id is at least ``minleft``."""
		start, end = int(self.binoffsets[parent]), int(
				self.binoffsets[parent + 1])
		start += int(np.searchsorted(self.binleft[start:end], minleft))
		return start, end

	def unaryrange(self, parent):
		"""Return ``(start, end)`` of the unary rules of ``parent``."""
		return int(self.unoffsets[parent]), int(self.unoffsets[parent + 1])

	def lexicalrange(self, word):
		"""Return ``(start, end)`` of the lexical rules producing ``word``."""
		return int(self.lexoffsets[word]), int(self.lexoffsets[word + 1])

	def binaryindex(self, parent, left, right):
		"""Index of a binary rule, or -1.

		Within a parent, rules are sorted by packed child pair."""
		col = self.packing.pack(left, right)
		if col == -1:
			return -1
		start, end = int(self.binoffsets[parent]), int(
				self.binoffsets[parent + 1])
		idx = start + int(np.searchsorted(self.binpacked[start:end], col))
		if idx < end and self.binpacked[idx] == col:
			return idx
		return -1

	def unaryindex(self, parent, child):
		"""Index of a unary rule, or -1."""
		start, end = self.unaryrange(parent)
		idx = start + int(np.searchsorted(self.unchild[start:end], child))
		if idx < end and self.unchild[idx] == child:
			return idx
		return -1

	def lexicalindex(self, parent, word):
		"""Index of a lexical rule, or -1."""
		start, end = self.lexicalrange(word)
		idx = start + int(np.searchsorted(self.lexparent[start:end], parent))
		if idx < end and self.lexparent[idx] == parent:
			return idx
		return -1

	def binaryblock(self, parentbase, leftbase, rightbase):
		"""Dense log probabilities of binary rules between the variants of
		three base categories.

		:returns: a tuple ``(logprob, ruleidx)`` of arrays with shape
			``(parents, lefts, rights)``; missing rules have log probability
			-inf and rule index -1."""
		key = parentbase, leftbase, rightbase
		if key not in self._binaryblocks:
			vocab = self.vocabulary
			parents, lefts, rights = (vocab.variants(parentbase),
					vocab.variants(leftbase), vocab.variants(rightbase))
			shape = len(parents), len(lefts), len(rights)
			logprob = np.full(shape, -np.inf)
			ruleidx = np.full(shape, -1, dtype=np.int64)
			for i, parent in enumerate(parents):
				start, end = self.parentrange(parent, lefts.start)
				# packed columns of the parent's rules, decoded to child pairs
				ll, rr = np.divmod(self.packing.keys[self.binpacked[start:end]],
						self.packing.nsymbols)
				mask = ((ll < lefts.stop) & (rr >= rights.start)
						& (rr < rights.stop))
				j, k = ll[mask] - lefts.start, rr[mask] - rights.start
				logprob[i, j, k] = self.binprob[start:end][mask]
				ruleidx[i, j, k] = np.arange(start, end)[mask]
			self._binaryblocks[key] = logprob, ruleidx
		return self._binaryblocks[key]

	def unaryblock(self, parentbase, childbase):
		"""Like binaryblock() for unary rules; shape ``(parents, children)``.
		"""
		key = parentbase, childbase
		if key not in self._unaryblocks:
			vocab = self.vocabulary
			parents, children = (vocab.variants(parentbase),
					vocab.variants(childbase))
			logprob = np.full((len(parents), len(children)), -np.inf)
			ruleidx = np.full((len(parents), len(children)), -1,
					dtype=np.int64)
			for i, parent in enumerate(parents):
				start, end = self.unaryrange(parent)
				cc = self.unchild[start:end]
				mask = (cc >= children.start) & (cc < children.stop)
				logprob[i, cc[mask] - children.start] = self.unprob[
						start:end][mask]
				ruleidx[i, cc[mask] - children.start] = np.arange(
						start, end)[mask]
			self._unaryblocks[key] = logprob, ruleidx
		return self._unaryblocks[key]

	def lexicalblock(self, parentbase, word):
		"""Log probabilities of ``word`` for each variant of a category;
		returns ``(logprob, ruleidx)`` with shape ``(parents, )``."""
		key = parentbase, word
		if key not in self._lexicalblocks:
			parents = self.vocabulary.variants(parentbase)
			logprob = np.full(len(parents), -np.inf)
			ruleidx = np.full(len(parents), -1, dtype=np.int64)
			start, end = self.lexicalrange(word)
			pp = self.lexparent[start:end]
			mask = (pp >= parents.start) & (pp < parents.stop)
			logprob[pp[mask] - parents.start] = self.lexprob[start:end][mask]
			ruleidx[pp[mask] - parents.start] = np.arange(start, end)[mask]
			self._lexicalblocks[key] = logprob, ruleidx
		return self._lexicalblocks[key]


def _columns(productions, width):
	"""Turn a list of productions into integer id arrays and a float
	probability array; unused id columns are filled with -1."""
	ids = np.array([[-1 if a is None else a for a in prod[:width - 1]]
			for prod in productions], dtype=np.int64).reshape(-1, width - 1)
	prob = np.array([prod[width - 1] for prod in productions],
			dtype=np.float64)
	return tuple(ids[:, n] for n in range(width - 1)) + (prob, )


def _checkunique(kind, *columns):
	"""Raise ValueError if sorted rule columns contain a duplicate row."""
	if len(columns[0]) < 2:
		return
	same = np.ones(len(columns[0]) - 1, dtype=bool)
	for col in columns:
		same &= col[1:] == col[:-1]
	if same.any():
		raise ValueError('duplicate %s rule.' % kind)


__all__ = ['PackingFunction', 'SparseMatrixGrammar']
