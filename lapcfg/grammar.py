"""Production-list grammars: split, merge, and grammar files.

A :class:`ProductionListGrammar` holds explicit lists of binary, unary and
lexical productions over the ids of a :class:`lapcfg.vocabulary.Vocabulary`
and :class:`lapcfg.vocabulary.Lexicon`, with natural log probabilities.

Grammar file format (optionally gzip-compressed)::

	# start=top
	vocabulary
	top	top	0
	a_0	a	0
	...
	lexicon
	e
	binary
	a_0	a_1	b_0	-1.0986122886681098
	unary
	top	a_0	-0.6931471805599453
	lexical
	c_0	e	-0.4054651081081644
"""
import logging
from collections import namedtuple, OrderedDict
import numpy as np
from .util import openread, openwrite
from .vocabulary import Vocabulary, Lexicon, SplitMergeError

Production = namedtuple('Production', ('parent', 'left', 'right', 'prob'))
Production.__doc__ = """A rule with its log probability (or count).

For unary rules ``left`` is the child and ``right`` is None; for lexical
rules ``left`` is the word id and ``right`` is None."""

SECTIONS = ('vocabulary', 'lexicon', 'binary', 'unary', 'lexical')


class ProductionListGrammar(object):
	"""A PCFG as explicit lists of productions.

	:param vocabulary: a Vocabulary of nonterminals; id 0 is the start symbol.
	:param lexicon: a Lexicon of terminals.
	:param binary, unary, lexical: sequences of ``Production`` tuples with
		log probabilities.
	:param ancestor: key of the pre-split grammar in a GrammarRegistry, or
		None.
	:raises ValueError: if a production refers to an unknown id."""

	def __init__(self, vocabulary, lexicon, binary=(), unary=(), lexical=(),
			ancestor=None):
		self.vocabulary = vocabulary
		self.lexicon = lexicon
		self.binary = [Production(*a) for a in binary]
		self.unary = [Production(a[0], a[1], None, a[-1]) for a in unary]
		self.lexical = [Production(a[0], a[1], None, a[-1]) for a in lexical]
		self.ancestor = ancestor
		nsym, nlex = len(vocabulary), len(lexicon)
		for prods, kinds in ((self.binary, (nsym, nsym, nsym)),
				(self.unary, (nsym, nsym)), (self.lexical, (nsym, nlex))):
			for prod in prods:
				for n, limit in zip(prod, kinds):
					if not 0 <= n < limit:
						raise ValueError('production with unknown id: %r'
								% (prod, ))

	@classmethod
	def fromcounts(cls, counts, order='frequency'):
		"""Relative frequency estimate from a StringCountGrammar.

		:param order: symbol ordering, see
			:py:meth:`lapcfg.counts.StringCountGrammar.vocabulary`."""
		vocab = counts.vocabulary(order)
		lexicon = counts.lexicon()
		lognorm = {label: np.log(counts.observations(label))
				for label in vocab.baselabels}
		binary = [(vocab.index(p), vocab.index(l), vocab.index(r),
				np.log(cnt) - lognorm[p])
				for (p, l, r), cnt in counts.binarycounts.items()]
		unary = [(vocab.index(p), vocab.index(c), None,
				np.log(cnt) - lognorm[p])
				for (p, c), cnt in counts.unarycounts.items()]
		lexical = [(vocab.index(p), lexicon.index(w), None,
				np.log(cnt) - lognorm[p])
				for (p, w), cnt in counts.lexicalcounts.items()]
		return cls(vocab, lexicon, binary, unary, lexical)

	def __repr__(self):
		return '%s(%d symbols, %d words, %d rules)' % (
				self.__class__.__name__, len(self.vocabulary),
				len(self.lexicon), self.totalrules())

	@property
	def startsymbol(self):
		"""Label of the start symbol."""
		return self.vocabulary.labels[self.vocabulary.startsymbol]

	def binaryrules(self):
		"""Number of distinct binary rules."""
		return len(self.binary)

	def unaryrules(self):
		"""Number of distinct unary rules."""
		return len(self.unary)

	def lexicalrules(self):
		"""Number of distinct lexical rules."""
		return len(self.lexical)

	def totalrules(self):
		"""Number of distinct rules."""
		return len(self.binary) + len(self.unary) + len(self.lexical)

	def binarylogprob(self, parent, left, right):
		"""Log probability of a binary rule given as labels; -inf if absent."""
		vocab = self.vocabulary
		key = vocab.index(parent), vocab.index(left), vocab.index(right)
		for prod in self.binary:
			if prod[:3] == key:
				return prod.prob
		return -np.inf

	def unarylogprob(self, parent, child):
		"""Log probability of a unary rule given as labels; -inf if absent."""
		key = self.vocabulary.index(parent), self.vocabulary.index(child)
		for prod in self.unary:
			if prod[:2] == key:
				return prod.prob
		return -np.inf

	def lexicallogprob(self, parent, word):
		"""Log probability of a lexical rule given as labels; -inf if absent.
		"""
		key = self.vocabulary.index(parent), self.lexicon.index(word)
		for prod in self.lexical:
			if prod[:2] == key:
				return prod.prob
		return -np.inf

	def split(self, noise, ids=None, registry=None):
		"""Split nonterminals into two variants each.

		The probability of each rule of a split parent is divided equally
		over the variants of its children; for an even number of child
		combinations, consecutive pairs of combinations receive the
		perturbations of ``noise``, which preserve each pair's total.

		:param noise: a noise generator, e.g., ``RandomNoiseGenerator``.
		:param ids: ids or labels to split; by default, all nonterminals
			except the start symbol.
		:param registry: if given, this grammar is registered and becomes the
			ancestor of the result.
		:returns: a new ProductionListGrammar.
		:raises SplitMergeError: when asked to split a terminal, an unknown
			symbol, or the start symbol."""
		if ids is not None:
			ids = [self._symbolid(a) for a in ids]
		newvocab, remap = self.vocabulary.split(ids)
		binary, unary, lexical = [], [], []
		for prod in self.binary:
			parents, lefts, rights = (remap[prod.parent], remap[prod.left],
					remap[prod.right])
			combos = len(lefts) * len(rights)
			prob = prod.prob - np.log(combos)
			pert = _perturbation(noise, len(parents) * combos, combos)
			n = 0
			for parent in parents:
				for left in lefts:
					for right in rights:
						binary.append(Production(parent, left, right,
								prob + pert[n]))
						n += 1
		for prod in self.unary:
			parents, children = remap[prod.parent], remap[prod.left]
			prob = prod.prob - np.log(len(children))
			pert = _perturbation(noise, len(parents) * len(children),
					len(children))
			n = 0
			for parent in parents:
				for child in children:
					unary.append(Production(parent, child, None,
							prob + pert[n]))
					n += 1
		for prod in self.lexical:
			for parent in remap[prod.parent]:
				lexical.append(Production(parent, prod.left, None, prod.prob))
		ancestor = self.ancestor
		if registry is not None:
			ancestor = registry.register(self)
		return ProductionListGrammar(newvocab, self.lexicon, binary, unary,
				lexical, ancestor=ancestor)

	def merge(self, groups, weights=None):
		"""Merge groups of variants into single symbols.

		Rules of merged parents are mixed with weights proportional to each
		variant's marginal frequency; rules with merged children are summed.

		:param groups: sequence of collections of ids (or labels) to merge.
		:param weights: sequence with the marginal frequency of each id; if
			None, variants are weighted uniformly.
		:returns: a new ProductionListGrammar with the same ancestor.
		:raises SplitMergeError: for unknown ids or groups that mix
			categories."""
		groups = [[self._symbolid(a) for a in group] for group in groups]
		newvocab, remap = self.vocabulary.merge(groups)
		logweight = np.zeros(len(self.vocabulary))
		for group in groups:
			group = sorted(set(group))
			if weights is None or sum(weights[n] for n in group) <= 0:
				logweight[group] = -np.log(len(group))
			else:
				total = sum(weights[n] for n in group)
				with np.errstate(divide='ignore'):
					logweight[group] = np.log(
							[weights[n] / total for n in group])
		binary, unary, lexical = OrderedDict(), OrderedDict(), OrderedDict()
		for prod in self.binary:
			_addlogprob(binary, (remap[prod.parent], remap[prod.left],
					remap[prod.right]), prod.prob + logweight[prod.parent])
		for prod in self.unary:
			_addlogprob(unary, (remap[prod.parent], remap[prod.left]),
					prod.prob + logweight[prod.parent])
		for prod in self.lexical:
			_addlogprob(lexical, (remap[prod.parent], prod.left),
					prod.prob + logweight[prod.parent])
		return ProductionListGrammar(newvocab, self.lexicon,
				[key + (prob, ) for key, prob in binary.items()
					if prob > -np.inf],
				[key + (None, prob) for key, prob in unary.items()
					if prob > -np.inf],
				[key + (None, prob) for key, prob in lexical.items()
					if prob > -np.inf],
				ancestor=self.ancestor)

	def _symbolid(self, symbol):
		"""Resolve a label or id of a nonterminal to be split or merged."""
		if isinstance(symbol, str):
			if symbol in self.vocabulary:
				return self.vocabulary.index(symbol)
			if symbol in self.lexicon:
				raise SplitMergeError('cannot split or merge terminal %r.'
						% symbol)
			raise SplitMergeError('unknown symbol: %r' % symbol)
		return symbol

	def marginals(self):
		"""Collapse all variants to their base categories.

		:returns: a dict mapping each rule as a tuple of base labels (words
			for lexical rules) to the average probability of the rule over the
			parent variants, i.e., the distribution of the unsplit grammar if
			all variants are equally likely."""
		vocab = self.vocabulary
		result = {}
		for prods, iswordrule in ((self.binary, False), (self.unary, False),
				(self.lexical, True)):
			for prod in prods:
				key = (vocab.baselabels[vocab.base[prod.parent]], )
				if iswordrule:
					key += (self.lexicon.words[prod.left], )
				else:
					key += tuple(vocab.baselabels[vocab.base[a]]
							for a in prod[1:3] if a is not None)
				prob = np.exp(prod.prob) / vocab.count[vocab.base[prod.parent]]
				result[key] = result.get(key, 0.0) + prob
		return result


def _perturbation(noise, count, combos):
	"""Noise for ``count`` rules; pairs of consecutive rules are siblings
	if the number of child combinations per parent is even."""
	if combos % 2:
		return np.zeros(count)
	return noise.noise(count)


def _addlogprob(table, key, logprob):
	"""Add a probability to a table of log probabilities."""
	if key in table:
		table[key] = np.logaddexp(table[key], logprob)
	else:
		table[key] = logprob


class BiasedNoiseGenerator(object):
	"""Favor the first rule of each pair by ``amount``.

	>>> BiasedNoiseGenerator(0.5).noise(4).round(3).tolist()
	[0.405, -0.693, 0.405, -0.693]
	"""

	def __init__(self, amount):
		if not 0 <= amount < 1:
			raise ValueError('noise amount should be in [0, 1).')
		self.bias0 = np.log1p(amount)
		self.bias1 = np.log1p(-amount)

	def noise(self, count):
		"""Return ``count`` log-space perturbations; count must be even."""
		if count % 2:
			raise ValueError('noise is generated in pairs.')
		return np.tile([self.bias0, self.bias1], count // 2)


class RandomNoiseGenerator(BiasedNoiseGenerator):
	"""Perturb pairs of rules by ``amount``; the orientation of each pair is
	drawn from a random number generator seeded with ``seed``."""

	def __init__(self, amount, seed=None):
		super(RandomNoiseGenerator, self).__init__(amount)
		self.seed = seed
		self.rng = np.random.default_rng(seed)

	def noise(self, count):
		"""Return ``count`` log-space perturbations; count must be even."""
		if count % 2:
			raise ValueError('noise is generated in pairs.')
		flip = self.rng.integers(0, 2, size=count // 2).astype(bool)
		result = np.empty(count)
		result[0::2] = np.where(flip, self.bias1, self.bias0)
		result[1::2] = np.where(flip, self.bias0, self.bias1)
		return result


class GrammarRegistry(object):
	"""Keep grammars of a training run by integer key.

	Grammars refer to their pre-split ancestor by key only.

	>>> registry = GrammarRegistry()
	>>> len(registry)
	0
	"""

	def __init__(self):
		self.grammars = []

	def __len__(self):
		return len(self.grammars)

	def __getitem__(self, key):
		return self.grammars[key]

	def register(self, grammar):
		"""Add grammar unless present; return its key."""
		for key, other in enumerate(self.grammars):
			if other is grammar:
				return key
		self.grammars.append(grammar)
		return len(self.grammars) - 1

	def ancestor(self, grammar):
		"""Return the ancestor of grammar, or None."""
		if grammar.ancestor is None:
			return None
		return self.grammars[grammar.ancestor]

	def checklineage(self, grammar):
		"""Check that grammar shares its categories with its ancestor.

		:raises ValueError: on a mismatch or unknown ancestor key."""
		if grammar.ancestor is None:
			return
		if not 0 <= grammar.ancestor < len(self.grammars):
			raise ValueError('unknown ancestor grammar: %r'
					% grammar.ancestor)
		ancestor = self.grammars[grammar.ancestor]
		if not ancestor.vocabulary.compatible(grammar.vocabulary):
			raise ValueError('vocabulary of grammar does not match that of '
					'its ancestor.')
		if ancestor.lexicon != grammar.lexicon:
			raise ValueError('lexicon of grammar does not match that of '
					'its ancestor.')


def writegrammar(grammar, filename):
	"""Write grammar to a file; compress with gzip if filename ends in .gz.
	"""
	with openwrite(filename) as out:
		out.write(grammarstr(grammar))


def grammarstr(grammar):
	"""Return the text representation of a grammar."""
	vocab, lexicon = grammar.vocabulary, grammar.lexicon
	labels, words = vocab.labels, lexicon.words
	result = ['# start=%s' % grammar.startsymbol, 'vocabulary']
	result.extend('%s\t%s\t%d' % (label, vocab.baselabels[b], k)
			for label, b, k in zip(labels, vocab.base, vocab.subindex))
	result.append('lexicon')
	result.extend(words)
	result.append('binary')
	result.extend('%s\t%s\t%s\t%r' % (labels[p], labels[l], labels[r],
			float(prob)) for p, l, r, prob in grammar.binary)
	result.append('unary')
	result.extend('%s\t%s\t%r' % (labels[p], labels[c], float(prob))
			for p, c, _, prob in grammar.unary)
	result.append('lexical')
	result.extend('%s\t%s\t%r' % (labels[p], words[w], float(prob))
			for p, w, _, prob in grammar.lexical)
	return '\n'.join(result) + '\n'


def readgrammar(filename):
	"""Read a grammar written by writegrammar().

	:raises ValueError: if the file is malformed."""
	with openread(filename) as inp:
		return parsegrammar(inp, filename)


def parsegrammar(lines, filename='<string>'):
	"""Parse the lines of a grammar file into a ProductionListGrammar."""
	section = start = None
	vocab = []
	words = []
	rules = {'binary': [], 'unary': [], 'lexical': []}
	fields = {'vocabulary': 3, 'lexicon': 1, 'binary': 4, 'unary': 3,
			'lexical': 3}
	for n, line in enumerate(lines, 1):
		line = line.rstrip('\n')
		if not line.strip():
			continue
		if line.startswith('#'):
			if line.startswith('# start='):
				start = line[len('# start='):].strip()
			continue
		if line in SECTIONS:
			section = line
			continue
		if section is None:
			raise ValueError('%s: line %d: expected section header.'
					% (filename, n))
		row = line.split('\t')
		if len(row) != fields[section]:
			raise ValueError('%s: line %d: expected %d fields in %s section.'
					% (filename, n, fields[section], section))
		if section == 'vocabulary':
			vocab.append(row)
		elif section == 'lexicon':
			words.append(row[0])
		else:
			try:
				prob = float(row[-1])
			except ValueError:
				raise ValueError('%s: line %d: malformed probability %r.'
						% (filename, n, row[-1]))
			# also rejects nan
			if not -np.inf < prob <= 0.0:
				raise ValueError('%s: line %d: not a log probability: %r.'
						% (filename, n, row[-1]))
			rules[section].append((n, row[:-1], prob))
	if not vocab:
		raise ValueError('%s: no vocabulary section.' % filename)
	baselabels = list(OrderedDict.fromkeys(base for _, base, _ in vocab))
	try:
		vocabulary = Vocabulary(baselabels,
				[baselabels.index(base) for _, base, _ in vocab],
				[int(k) for _, _, k in vocab],
				[any(label != base for label, base, _ in vocab
					if base == b) for b in baselabels])
		lexicon = Lexicon(words)
	except ValueError as err:
		raise ValueError('%s: %s' % (filename, err))
	if vocabulary.labels != tuple(label for label, _, _ in vocab):
		raise ValueError('%s: inconsistent vocabulary labels.' % filename)
	if start is not None and start != vocabulary.labels[0]:
		raise ValueError('%s: start symbol %r is not the first symbol.'
				% (filename, start))
	result = {}
	for section, rows in rules.items():
		result[section] = []
		for n, row, prob in rows:
			try:
				if section == 'lexical':
					ids = [vocabulary.index(row[0]), lexicon.index(row[1])]
				else:
					ids = [vocabulary.index(a) for a in row]
			except ValueError as err:
				raise ValueError('%s: line %d: %s' % (filename, n, err))
			result[section].append(Production(ids[0], ids[1],
					ids[2] if section == 'binary' else None, prob))
	return ProductionListGrammar(vocabulary, lexicon, result['binary'],
			result['unary'], result['lexical'])


def grammarinfo(grammar):
	"""Return a summary of the sizes of a grammar.

	>>> vocab, lexicon = Vocabulary(['S', 'A']), Lexicon(['x'])
	>>> print(grammarinfo(ProductionListGrammar(vocab, lexicon,
	...		unary=[(0, 1, None, 0.0)], lexical=[(1, 0, None, 0.0)])))
	symbols: 2 (categories: 2) words: 1
	rules: 2 binary: 0 unary: 1 lexical: 1
	max variants: 1 (S)
	"""
	vocab = grammar.vocabulary
	maxbase = int(np.argmax(vocab.count))
	return ('symbols: %d (categories: %d) words: %d\n'
			'rules: %d binary: %d unary: %d lexical: %d\n'
			'max variants: %d (%s)' % (
				len(vocab), len(vocab.baselabels), len(grammar.lexicon),
				grammar.totalrules(), grammar.binaryrules(),
				grammar.unaryrules(), grammar.lexicalrules(),
				vocab.count[maxbase], vocab.baselabels[maxbase]))


def logsummary(grammar, msg='grammar'):
	"""Log a grammar summary at INFO level."""
	logging.info('%s:\n%s', msg, grammarinfo(grammar))


__all__ = ['Production', 'ProductionListGrammar', 'BiasedNoiseGenerator',
		'RandomNoiseGenerator', 'GrammarRegistry', 'writegrammar',
		'grammarstr', 'readgrammar', 'parsegrammar', 'grammarinfo',
		'logsummary']
