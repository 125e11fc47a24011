"""Count grammars: observed and expected rule frequencies.

Both implementations share the interface of :class:`CountGrammar`:
observation counts per rule and per parent, and the number of distinct rules
of each kind."""
from collections import Counter
import numpy as np
from .tree import isbinarized
from .vocabulary import Vocabulary, Lexicon
from .grammar import ProductionListGrammar


class CountGrammar(object):
	"""Interface of count grammars."""

	def binaryruleobservations(self, parent, left, right):
		"""Count of binary rule."""
		raise NotImplementedError

	def unaryruleobservations(self, parent, child):
		"""Count of unary rule."""
		raise NotImplementedError

	def lexicalruleobservations(self, parent, word):
		"""Count of lexical rule."""
		raise NotImplementedError

	def observations(self, parent):
		"""Total count of rules with given parent.

		Optional; implementations that do not track parent totals raise
		NotImplementedError."""
		raise NotImplementedError('%s does not track parent observations.'
				% self.__class__.__name__)

	def binaryrules(self):
		"""Number of distinct binary rules."""
		raise NotImplementedError

	def unaryrules(self):
		"""Number of distinct unary rules."""
		raise NotImplementedError

	def lexicalrules(self):
		"""Number of distinct lexical rules."""
		raise NotImplementedError

	def totalrules(self):
		"""Number of distinct rules."""
		return self.binaryrules() + self.unaryrules() + self.lexicalrules()


class StringCountGrammar(CountGrammar):
	"""Exact rule counts of binarized trees, keyed by labels and words.

	>>> from lapcfg.tree import Tree
	>>> counts = StringCountGrammar([Tree('(S (A x) (B (A y)))')])
	>>> counts.binaryrules(), counts.unaryrules(), counts.lexicalrules()
	(1, 1, 2)
	>>> counts.lexicalruleobservations('A', 'y'), counts.observations('A')
	(1, 2)
	"""

	def __init__(self, trees=()):
		self.binarycounts = Counter()
		self.unarycounts = Counter()
		self.lexicalcounts = Counter()
		self.parentcounts = Counter()
		self.binaryparentcounts = Counter()
		self.wordcounts = Counter()
		self.startsymbol = None
		self._nonterminals = {}  # label => order of first occurrence
		self._words = {}
		self._nbinary = self._nunary = self._nlexical = 0
		for tree in trees:
			self.add(tree)

	def add(self, tree):
		"""Add the productions of a tree.

		:raises ValueError: if the tree is not binarized or its root differs
			from the root of the first tree."""
		if not isbinarized(tree):
			raise ValueError('tree is not binarized: %s' % tree)
		if self.startsymbol is None:
			self.startsymbol = tree.label
		elif tree.label != self.startsymbol:
			raise ValueError('expected root label %r, got %r.'
					% (self.startsymbol, tree.label))
		for node in tree.subtrees():
			self._nonterminals.setdefault(node.label, len(self._nonterminals))
			self.parentcounts[node.label] += 1
			if node.ispreterminal():
				word = node[0]
				self._words.setdefault(word, len(self._words))
				self.wordcounts[word] += 1
				key = node.label, word
				if key not in self.lexicalcounts:
					self._nlexical += 1
				self.lexicalcounts[key] += 1
			elif len(node) == 1:
				key = node.label, node[0].label
				if key not in self.unarycounts:
					self._nunary += 1
				self.unarycounts[key] += 1
			else:
				key = node.label, node[0].label, node[1].label
				if key not in self.binarycounts:
					self._nbinary += 1
				self.binarycounts[key] += 1
				self.binaryparentcounts[node.label] += 1

	def binaryruleobservations(self, parent, left, right):
		return self.binarycounts[parent, left, right]

	def unaryruleobservations(self, parent, child):
		return self.unarycounts[parent, child]

	def lexicalruleobservations(self, parent, word):
		return self.lexicalcounts[parent, word]

	def observations(self, parent):
		return self.parentcounts[parent]

	def binaryrules(self):
		return self._nbinary

	def unaryrules(self):
		return self._nunary

	def lexicalrules(self):
		return self._nlexical

	def vocabulary(self, order='frequency'):
		"""Return a Vocabulary of the observed nonterminals.

		:param order: ``'frequency'``: start symbol first, then by descending
			frequency as parent of binary rules, ties broken by order of first
			occurrence; ``'observed'``: order of first occurrence."""
		if self.startsymbol is None:
			raise ValueError('no trees have been added.')
		labels = sorted(self._nonterminals, key=self._nonterminals.get)
		if order == 'frequency':
			labels = [self.startsymbol] + sorted(
					(a for a in labels if a != self.startsymbol),
					key=lambda a: -self.binaryparentcounts[a])
		elif order != 'observed':
			raise ValueError('unrecognized symbol order: %r' % order)
		return Vocabulary(labels)

	def lexicon(self):
		"""Return a Lexicon of the observed words in order of occurrence."""
		return Lexicon(sorted(self._words, key=self._words.get))

	def productionlistgrammar(self, order='frequency'):
		"""Relative frequency estimate of a PCFG from the counts."""
		return ProductionListGrammar.fromcounts(self, order)


class SentenceCounts(object):
	"""Expected rule counts of one sentence, as rule indices of a
	SparseMatrixGrammar and fractional counts."""

	__slots__ = ('binidx', 'binval', 'unidx', 'unval', 'lexidx', 'lexval')

	def __init__(self, binidx, binval, unidx, unval, lexidx, lexval):
		self.binidx, self.binval = binidx, binval
		self.unidx, self.unval = unidx, unval
		self.lexidx, self.lexval = lexidx, lexval

	def __getstate__(self):
		return tuple(getattr(self, a) for a in self.__slots__)

	def __setstate__(self, state):
		for name, value in zip(self.__slots__, state):
			setattr(self, name, value)


class FractionalCountGrammar(CountGrammar):
	"""Expected rule counts for the rules of a SparseMatrixGrammar.

	Counts are stored in arrays parallel to the rule arrays of the grammar;
	rules are addressed by ids. Accumulation is a sum and may be done in any
	order; reduce sentences in a fixed order for reproducible floating point
	results.

	:param grammar: a :class:`lapcfg.sparse.SparseMatrixGrammar`."""

	def __init__(self, grammar):
		self.grammar = grammar
		self.binary = np.zeros(len(grammar.binprob))
		self.unary = np.zeros(len(grammar.unprob))
		self.lexical = np.zeros(len(grammar.lexprob))
		self._summary = None

	def add(self, counts):
		"""Add the counts of one sentence (a SentenceCounts object)."""
		np.add.at(self.binary, counts.binidx, counts.binval)
		np.add.at(self.unary, counts.unidx, counts.unval)
		np.add.at(self.lexical, counts.lexidx, counts.lexval)
		self._summary = None

	def update(self, other):
		"""Add the counts of another FractionalCountGrammar."""
		if (len(other.binary) != len(self.binary)
				or len(other.unary) != len(self.unary)
				or len(other.lexical) != len(self.lexical)):
			raise ValueError('count grammars are based on different grammars.')
		self.binary += other.binary
		self.unary += other.unary
		self.lexical += other.lexical
		self._summary = None

	def _cardinalities(self):
		if self._summary is None:
			self._summary = (int(np.count_nonzero(self.binary)),
					int(np.count_nonzero(self.unary)),
					int(np.count_nonzero(self.lexical)))
		return self._summary

	def binaryruleobservations(self, parent, left, right):
		idx = self.grammar.binaryindex(parent, left, right)
		return 0.0 if idx == -1 else float(self.binary[idx])

	def unaryruleobservations(self, parent, child):
		idx = self.grammar.unaryindex(parent, child)
		return 0.0 if idx == -1 else float(self.unary[idx])

	def lexicalruleobservations(self, parent, word):
		idx = self.grammar.lexicalindex(parent, word)
		return 0.0 if idx == -1 else float(self.lexical[idx])

	def observations(self, parent):
		return float(self.parentcounts()[parent])

	def binaryrules(self):
		return self._cardinalities()[0]

	def unaryrules(self):
		return self._cardinalities()[1]

	def lexicalrules(self):
		return self._cardinalities()[2]

	def parentcounts(self):
		"""Return an array with the total count of each parent id."""
		nsym = len(self.grammar.vocabulary)
		return (np.bincount(self.grammar.binparent, weights=self.binary,
					minlength=nsym)
				+ np.bincount(self.grammar.unparent, weights=self.unary,
					minlength=nsym)
				+ np.bincount(self.grammar.lexparent, weights=self.lexical,
					minlength=nsym))

	def smooth(self, wordcounts, uncommonthreshold=100, smoothcommon=1.0,
			smoothuncommon=2.0):
		"""Return a copy in which the lexical counts of each word are
		interpolated across the variants of each category.

		For a word ``w`` occurring ``c(w)`` times in the treebank, the count of
		a variant ``t_x`` of category ``T`` becomes::

			(1 - a) * c(t_x, w) + a * c(T, w) * g(t_x) / g(T)

		where ``c(T, w)`` sums the counts of ``w`` over the variants of ``T``
		with a rule for ``w``, ``g`` is the total lexical count of a variant
		(summed over the same variants for ``g(T)``), and ``a = s / (c(w) + s)``
		with ``s = smoothuncommon`` if ``c(w) < uncommonthreshold`` and
		``s = smoothcommon`` otherwise. The count of each word with each
		category is preserved; a weight of 0 disables smoothing.

		:param wordcounts: array with the treebank frequency of each word id.
		"""
		gram = self.grammar
		freq = np.asarray(wordcounts, dtype=np.float64)[gram.lexword]
		weight = np.where(freq < uncommonthreshold, smoothuncommon,
				smoothcommon)
		with np.errstate(divide='ignore', invalid='ignore'):
			alpha = np.where(weight > 0, weight / (freq + weight), 0.0)
		variantmass = np.bincount(gram.lexparent, weights=self.lexical,
				minlength=len(gram.vocabulary))[gram.lexparent]
		base = gram.vocabulary.base[gram.lexparent].astype(np.int64)
		_, group = np.unique(base * len(gram.lexicon) + gram.lexword,
				return_inverse=True)
		group = group.reshape(-1)
		wordtotal = np.bincount(group, weights=self.lexical)[group]
		masstotal = np.bincount(group, weights=variantmass)[group]
		with np.errstate(divide='ignore', invalid='ignore'):
			share = np.where(masstotal > 0, variantmass / masstotal, 0.0)
		result = FractionalCountGrammar(gram)
		result.binary = self.binary.copy()
		result.unary = self.unary.copy()
		result.lexical = np.where(masstotal > 0,
				(1 - alpha) * self.lexical + alpha * wordtotal * share,
				self.lexical)
		return result

	def productionlistgrammar(self, minrulelogprob=-np.inf):
		"""Normalize the counts by parent into a new ProductionListGrammar.

		:param minrulelogprob: rules with a lower log probability are pruned.
		"""
		gram = self.grammar
		with np.errstate(divide='ignore', invalid='ignore'):
			lognorm = np.log(self.parentcounts())
			binprob = np.log(self.binary) - lognorm[gram.binparent]
			unprob = np.log(self.unary) - lognorm[gram.unparent]
			lexprob = np.log(self.lexical) - lognorm[gram.lexparent]
		binary = [(p, l, r, prob) for p, l, r, prob in zip(
				gram.binparent.tolist(), gram.binleft.tolist(),
				gram.binright.tolist(), binprob.tolist())
				if prob >= minrulelogprob and prob > -np.inf]
		unary = [(p, c, None, prob) for p, c, prob in zip(
				gram.unparent.tolist(), gram.unchild.tolist(),
				unprob.tolist())
				if prob >= minrulelogprob and prob > -np.inf]
		lexical = [(p, w, None, prob) for p, w, prob in zip(
				gram.lexparent.tolist(), gram.lexword.tolist(),
				lexprob.tolist())
				if prob >= minrulelogprob and prob > -np.inf]
		return ProductionListGrammar(gram.vocabulary, gram.lexicon,
				binary, unary, lexical, ancestor=gram.ancestor)


__all__ = ['CountGrammar', 'StringCountGrammar', 'SentenceCounts',
		'FractionalCountGrammar']
