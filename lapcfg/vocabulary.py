"""Symbol vocabularies for split nonterminals and terminals.

A :class:`Vocabulary` maps nonterminal labels to dense integer ids. Each id
belongs to a base category (the unsplit treebank label) and has a sub-index
within that category; all variants of a category occupy a contiguous id range.
Splitting and merging are pure transformations returning a new vocabulary and
a remap table from old ids to new ids.

>>> vocab = Vocabulary(['top', 'a', 'b'])
>>> split, remap = vocab.split()
>>> split.labels
('top', 'a_0', 'a_1', 'b_0', 'b_1')
>>> remap
[(0,), (1, 2), (3, 4)]
>>> merged, remap = split.merge([(3, 4)])
>>> merged.labels
('top', 'a_0', 'a_1', 'b_0')
>>> remap
[0, 1, 2, 3, 3]
"""
import numpy as np


class SplitMergeError(ValueError):
	"""Raised when a split or merge is requested for an invalid symbol."""


class Vocabulary(object):
	"""A nonterminal vocabulary with latent split variants.

	:param baselabels: sequence of unsplit category labels; the first is the
		start symbol.
	:param base: for each id, the index of its base category; default is one
		id per category.
	:param subindex: for each id, its sub-index within its base category.
	:param splitbase: for each base category, whether it has been split, which
		determines whether labels carry a ``_k`` suffix."""

	def __init__(self, baselabels, base=None, subindex=None, splitbase=None):
		self.baselabels = tuple(baselabels)
		if len(set(self.baselabels)) != len(self.baselabels):
			raise ValueError('duplicate labels in vocabulary.')
		if not self.baselabels:
			raise ValueError('empty vocabulary.')
		nbase = len(self.baselabels)
		if base is None:
			base = np.arange(nbase)
			subindex = np.zeros(nbase, dtype=np.int32)
		self.base = np.array(base, dtype=np.int32)
		self.subindex = np.array(subindex, dtype=np.int32)
		self.splitbase = (np.zeros(nbase, dtype=bool) if splitbase is None
				else np.array(splitbase, dtype=bool))
		if np.any(np.diff(self.base) < 0) or set(self.base) != set(
				range(nbase)):
			raise ValueError('variants of each base category must be '
					'contiguous and every category must have a variant.')
		# first id and number of variants per base category
		self.first = np.searchsorted(self.base, np.arange(nbase)).astype(
				np.int32)
		self.count = np.bincount(self.base, minlength=nbase).astype(np.int32)
		if self.count[0] != 1:
			raise ValueError('start symbol %r cannot have split variants.'
					% self.baselabels[0])
		self.labels = tuple(
				'%s_%d' % (self.baselabels[b], k) if self.splitbase[b]
				else self.baselabels[b]
				for b, k in zip(self.base, self.subindex))
		self.mapping = {label: n for n, label in enumerate(self.labels)}
		if len(self.mapping) != len(self.labels):
			raise ValueError('ambiguous split labels; base labels may not '
					'end in _<digits>.')
		self.base.flags.writeable = False
		self.subindex.flags.writeable = False

	startsymbol = 0

	def __len__(self):
		return len(self.labels)

	def __contains__(self, label):
		return label in self.mapping

	def __eq__(self, other):
		return (isinstance(other, Vocabulary)
				and self.labels == other.labels
				and self.baselabels == other.baselabels
				and np.array_equal(self.base, other.base))

	def __ne__(self, other):
		return not self.__eq__(other)

	__hash__ = None

	def __repr__(self):
		return '%s(%d symbols, %d categories)' % (
				self.__class__.__name__, len(self), len(self.baselabels))

	def index(self, label):
		"""Return id of label; raise ValueError for unknown labels."""
		try:
			return self.mapping[label]
		except KeyError:
			raise ValueError('unknown nonterminal: %r' % label)

	def baseindex(self, label):
		"""Return the base category index of an unsplit label."""
		try:
			return self.baselabels.index(label)
		except ValueError:
			raise ValueError('unknown category: %r' % label)

	def variants(self, base):
		"""Return the range of ids for the variants of a base category."""
		return range(self.first[base], self.first[base] + self.count[base])

	def annotated(self, n):
		"""Label of id ``n`` with its sub-index, even if unsplit."""
		return '%s_%d' % (self.baselabels[self.base[n]], self.subindex[n])

	def compatible(self, other):
		"""True if both vocabularies share the same base categories."""
		return self.baselabels == other.baselabels

	def _checkids(self, ids):
		for n in ids:
			if not isinstance(n, (int, np.integer)) or not 0 <= n < len(self):
				raise SplitMergeError('unknown nonterminal id: %r' % (n, ))

	def split(self, ids=None):
		"""Split each given id (default: all but the start symbol) in two.

		Variant ``k`` becomes variants ``2k`` and ``2k + 1``.

		:returns: a tuple ``(vocabulary, remap)`` where ``remap[n]`` is the
			tuple of new ids for old id ``n``.
		:raises SplitMergeError: for unknown ids or the start symbol."""
		if ids is None:
			ids = range(1, len(self))
		ids = set(ids)
		self._checkids(ids)
		if self.startsymbol in ids:
			raise SplitMergeError('the start symbol %r cannot be split.'
					% self.labels[self.startsymbol])
		base, subindex, remap = [], [], []
		for n in range(len(self)):
			if n in ids:
				remap.append((len(base), len(base) + 1))
				base.extend((self.base[n], self.base[n]))
				subindex.extend((2 * self.subindex[n],
						2 * self.subindex[n] + 1))
			else:
				remap.append((len(base), ))
				base.append(self.base[n])
				subindex.append(self.subindex[n])
		splitbase = self.splitbase.copy()
		splitbase[[self.base[n] for n in ids]] = True
		# keep sub-indices dense within categories with some unsplit variants
		subindex = _renumber(base, subindex)
		return Vocabulary(self.baselabels, base, subindex, splitbase), remap

	def merge(self, groups):
		"""Merge each group of ids into a single id.

		The lowest id of each group survives; the sub-indices of each
		category are renumbered consecutively.

		:param groups: an iterable of collections of ids; each group must
			consist of variants of a single base category, and groups may not
			overlap.
		:returns: a tuple ``(vocabulary, remap)`` where ``remap[n]`` is the
			new id for old id ``n``.
		:raises SplitMergeError: for unknown ids, groups mixing categories,
			or ids occurring in more than one group."""
		survivor = {}
		for group in groups:
			group = sorted(set(group))
			self._checkids(group)
			if len({self.base[n] for n in group}) > 1:
				raise SplitMergeError('cannot merge variants of different '
						'categories: %r' % [self.labels[n] for n in group])
			for n in group:
				if n in survivor:
					raise SplitMergeError('id %d occurs in multiple merge '
							'groups.' % n)
				survivor[n] = group[0]
		base, subindex, remap = [], [], []
		for n in range(len(self)):
			if survivor.get(n, n) != n:
				remap.append(remap[survivor[n]])
				continue
			remap.append(len(base))
			base.append(self.base[n])
			subindex.append(self.subindex[n])
		subindex = _renumber(base, subindex)
		return Vocabulary(self.baselabels, base, subindex,
				self.splitbase), remap


def _renumber(base, subindex):
	"""Make sub-indices of each category consecutive if they are not a
	permutation of ``0..k-1`` already, preserving their order."""
	result = list(subindex)
	start = 0
	while start < len(base):
		end = start
		while end < len(base) and base[end] == base[start]:
			end += 1
		if sorted(subindex[start:end]) != list(range(end - start)):
			result[start:end] = range(end - start)
		start = end
	return result


class Lexicon(object):
	"""A bijection between terminal symbols (words) and dense ids.

	>>> lexicon = Lexicon(['e', 'f'])
	>>> lexicon.index('f'), lexicon.words[0], len(lexicon)
	(1, 'e', 2)
	"""

	def __init__(self, words):
		self.words = tuple(words)
		self.mapping = {word: n for n, word in enumerate(self.words)}
		if len(self.mapping) != len(self.words):
			raise ValueError('duplicate words in lexicon.')

	def __len__(self):
		return len(self.words)

	def __contains__(self, word):
		return word in self.mapping

	def __eq__(self, other):
		return isinstance(other, Lexicon) and self.words == other.words

	def __ne__(self, other):
		return not self.__eq__(other)

	__hash__ = None

	def __repr__(self):
		return '%s(%d words)' % (self.__class__.__name__, len(self))

	def index(self, word):
		"""Return id of word; raise ValueError for unknown words."""
		try:
			return self.mapping[word]
		except KeyError:
			raise ValueError('unknown word: %r' % word)


__all__ = ['SplitMergeError', 'Vocabulary', 'Lexicon']
