"""Split/merge EM training of latent-annotation PCFGs.

The trainer induces a treebank PCFG, builds a constraining chart for each gold
tree, and repeats for a number of cycles: split every category in two, run EM
constrained to the gold trees, merge back the splits with the smallest loss in
likelihood, and run EM again.

Usage with a parameter file::

	from lapcfg.tree import readtrees
	from lapcfg.trainer import SplitMergeTrainer, readparam
	params = readparam('train.prm')
	result = SplitMergeTrainer(readtrees(params.traincorpus), params).train()
"""
import io
import os
import sys
import logging
import multiprocessing
from operator import itemgetter
from collections import namedtuple
import numpy as np
from . import __version__
from .util import DictObj, workerfunc
from .counts import StringCountGrammar, FractionalCountGrammar
from .grammar import ProductionListGrammar, RandomNoiseGenerator, \
		GrammarRegistry, writegrammar, logsummary
from .sparse import SparseMatrixGrammar
from .chart import ConstrainingChart, ConstrainedChart, ParseFailure

DEFAULTS = dict(
	traincorpus=None,  # treebank with one binarized tree per line
	resultdir=None,  # if given, grammar of each cycle is written here
	cycles=6,  # number of split/merge cycles
	emiterations=50,  # EM iterations after each split
	emiterationsaftermerge=20,  # EM iterations after each merge
	mergefraction=0.5,  # fraction of splits to merge back; 0 disables merge
	noise=0.01,  # amount of random noise added when splitting
	seed=0,  # seed for the noise generator
	minimprovement=1e-4,  # stop EM when log likelihood improves less
	minrulelogprob=-140.0,  # prune rules with a lower log probability
	uncommonthreshold=100,  # words less frequent than this are uncommon
	smoothcommon=1.0,  # lexical smoothing weight for common words
	smoothuncommon=2.0,  # lexical smoothing weight for uncommon words
	embeforesplit=False,  # run one EM iteration before the first split
	numproc=1,  # number of worker processes; None means all cpus
	order='frequency',  # symbol order: 'frequency' or 'observed'
	verbosity=1,  # 0: warnings; 1: progress; 2: debug; 3-4: more detail
	)

EmResult = namedtuple('EmResult',
		('grammar', 'counts', 'loglikelihood', 'failures'))
TrainResult = namedtuple('TrainResult',
		('grammar', 'loglikelihoods', 'failures'))

INTERNALPARAMS = None


def getparams(**kwds):
	"""Return a DictObj with DEFAULTS updated with the given parameters.

	:raises ValueError: for unrecognized parameters."""
	for key in kwds:
		if key not in DEFAULTS:
			raise ValueError('unrecognized option: %r' % key)
	params = dict(DEFAULTS)
	params.update(kwds)
	if not 0 <= params['mergefraction'] <= 1:
		raise ValueError('mergefraction should be between 0 and 1.')
	if min(params['smoothcommon'], params['smoothuncommon']) < 0:
		raise ValueError('smoothing weights should be non-negative.')
	if params['order'] not in ('frequency', 'observed'):
		raise ValueError('unrecognized symbol order: %r' % params['order'])
	return DictObj(params)


def readparam(filename):
	"""Parse a parameter file.

	:param filename: The file should contain a list of comma-separated
		``attribute=value`` pairs and will be read using ``eval('dict(%s)' %
		open(file).read())``.
	:returns: A DictObj."""
	with io.open(filename, encoding='utf8') as fileobj:
		params = eval('dict(%s)' % fileobj.read())  # pylint: disable=eval-used
	return getparams(**params)


def setuplogging(verbosity, resultdir=None):
	"""Log messages to stderr according to verbosity, and everything to
	``resultdir/output.log`` if a result directory is given."""
	formatstr = '%(message)s'
	if verbosity == 0:
		logging.basicConfig(level=logging.WARNING, format=formatstr)
	elif verbosity == 1:
		logging.basicConfig(level=logging.INFO, format=formatstr)
	elif verbosity == 2:
		logging.basicConfig(level=logging.DEBUG, format=formatstr)
	elif 3 <= verbosity <= 4:
		logging.basicConfig(level=5, format=formatstr)
	else:
		raise ValueError('verbosity should be >= 0 and <= 4. ')
	if resultdir is not None:
		fileobj = logging.FileHandler(filename='%s/output.log' % resultdir)
		fileobj.setLevel(logging.DEBUG)
		fileobj.setFormatter(logging.Formatter(formatstr))
		logging.getLogger('').addHandler(fileobj)
	logging.info('lapcfg %s, running on Python %s',
			__version__, sys.version.split()[0])


def initworker(params):
	"""Set global parameter object."""
	global INTERNALPARAMS
	# this variable is global because we want to pass it to the fork through
	# inheritance from its parent, instead of through serialization.
	INTERNALPARAMS = params


@workerfunc
def mpworker(sentid):
	"""Multiprocessing wrapper of worker."""
	return worker(sentid)


def worker(sentid):
	"""Process one sentence with the grammar in INTERNALPARAMS.

	:returns: a tuple ``(sentid, loglikelihood, result, error)``; result is a
		SentenceCounts object for task ``'em'`` and an array of losses for
		task ``'mergeloss'``; error is a message if the sentence failed."""
	params = INTERNALPARAMS
	chart = ConstrainedChart(params.charts[sentid], params.grammar)
	try:
		loglikelihood = chart.inside()
		if params.task == 'em':
			result = chart.counts()
		elif params.task == 'mergeloss':
			result = chart.mergeloss(params.pairs, params.logsplitfraction)
		else:
			raise ValueError('unknown task: %r' % params.task)
	except ParseFailure as err:
		return sentid, None, None, str(err)
	return sentid, loglikelihood, result, None


def logsplitfraction(vocabulary, pairs, parentcounts):
	"""For each id in a pair, the log of its share of the pair's frequency.

	Pairs without observations are split evenly."""
	result = np.zeros(len(vocabulary))
	for a, b in pairs:
		total = parentcounts[a] + parentcounts[b]
		if total > 0:
			with np.errstate(divide='ignore'):
				result[a] = np.log(parentcounts[a] / total)
				result[b] = np.log(parentcounts[b] / total)
		else:
			result[a] = result[b] = np.log(0.5)
	return result


def likelihoodloss(trainer, grammar, pairs, parentcounts):
	"""Estimate the loss in corpus log likelihood of merging each pair.

	Approximates the likelihood of the merged grammar per occurrence of a
	category in the gold trees, as in Petrov et al. (2006), Learning
	accurate, compact, and interpretable tree annotation.

	:param trainer: the SplitMergeTrainer, whose ``mapsentences()`` is used.
	:param grammar: the current ProductionListGrammar.
	:param pairs: list of ``(id1, id2)`` sibling variants.
	:param parentcounts: expected frequency of each id.
	:returns: an array with a loss for each pair."""
	lsf = logsplitfraction(grammar.vocabulary, pairs, parentcounts)
	results = trainer.mapsentences(SparseMatrixGrammar(grammar), 'mergeloss',
			pairs=pairs, logsplitfraction=lsf)
	loss = np.zeros(len(pairs))
	for _sentid, _, sentloss, error in results:
		if error is None:
			loss += sentloss
	return loss


class SplitMergeTrainer(object):
	"""Train a latent-annotation PCFG on a treebank.

	:param trees: sequence of binarized Tree objects, all with the same root
		label.
	:param params: a DictObj as returned by ``getparams()``/``readparam()``;
		defaults are used when None.
	:param mergecost: a function ``(trainer, grammar, pairs, parentcounts)``
		returning an array with the cost of merging each pair of sibling
		variants; the pairs with the lowest cost are merged. Defaults to
		``likelihoodloss``.
	:param registry: GrammarRegistry for the lineage of split grammars.
	:raises ValueError: if the treebank is empty or malformed."""

	def __init__(self, trees, params=None, mergecost=None, registry=None):
		self.params = getparams() if params is None else params
		self.mergecost = likelihoodloss if mergecost is None else mergecost
		self.registry = GrammarRegistry() if registry is None else registry
		trees = list(trees)
		if not trees:
			raise ValueError('no trees to train on.')
		self.counts = StringCountGrammar(trees)
		self.basegrammar = ProductionListGrammar.fromcounts(
				self.counts, self.params.order)
		self.wordcounts = np.array([self.counts.wordcounts[word]
				for word in self.basegrammar.lexicon.words], dtype=np.float64)
		self.charts = [ConstrainingChart(tree, self.basegrammar.vocabulary,
				self.basegrammar.lexicon) for tree in trees]
		self.noise = RandomNoiseGenerator(self.params.noise, self.params.seed)
		self.loglikelihoods = []
		self.failures = 0
		logging.info('%d trees', len(trees))
		logsummary(self.basegrammar, 'base grammar')

	def mapsentences(self, grammar, task, **kwds):
		"""Apply a task to each sentence with a SparseMatrixGrammar.

		:returns: list of worker results, sorted by sentence number."""
		params = DictObj(grammar=grammar, charts=self.charts, task=task,
				**kwds)
		sentids = range(len(self.charts))
		if self.params.numproc == 1:
			initworker(params)
			results = [worker(n) for n in sentids]
		else:
			pool = multiprocessing.Pool(processes=self.params.numproc,
					initializer=initworker, initargs=(params,))
			try:
				results = list(pool.imap_unordered(mpworker, sentids,
						chunksize=max(1, len(self.charts) // 64)))
			finally:
				pool.terminate()
				pool.join()
		results.sort(key=itemgetter(0))
		return results

	def emiteration(self, grammar):
		"""Run one EM iteration.

		The M-step smooths the lexical counts across the variants of each
		category before normalizing; see FractionalCountGrammar.smooth().

		:returns: an EmResult with the re-estimated grammar, the unsmoothed
			fractional counts, and the corpus log likelihood under ``grammar``.
		"""
		sparse = SparseMatrixGrammar(grammar)
		counts = FractionalCountGrammar(sparse)
		loglikelihood, failures = 0.0, 0
		for sentid, sentll, sentcounts, error in self.mapsentences(
				sparse, 'em'):
			if error is not None:
				failures += 1
				logging.debug('skipping sentence %d: %s', sentid, error)
				continue
			loglikelihood += sentll
			counts.add(sentcounts)
		if failures == len(self.charts):
			raise ValueError('none of the trees is derivable by the grammar.')
		newgrammar = counts.smooth(self.wordcounts,
				self.params.uncommonthreshold, self.params.smoothcommon,
				self.params.smoothuncommon).productionlistgrammar(
				self.params.minrulelogprob)
		return EmResult(newgrammar, counts, loglikelihood, failures)

	def em(self, grammar, iterations):
		"""Run EM until the number of iterations or until the improvement in
		log likelihood falls below ``minimprovement``.

		:returns: a tuple ``(grammar, counts)``; counts are those of the last
			E-step, or None if no iterations were run."""
		counts = prev = None
		for n in range(1, iterations + 1):
			result = self.emiteration(grammar)
			self.loglikelihoods.append(result.loglikelihood)
			self.failures += result.failures
			logging.info('EM iteration %d: log likelihood %.4f; '
					'%d sentences skipped', n, result.loglikelihood,
					result.failures)
			grammar, counts = result.grammar, result.counts
			if (prev is not None and result.loglikelihood - prev
					< self.params.minimprovement):
				break
			prev = result.loglikelihood
		return grammar, counts

	def split(self, grammar):
		"""Split all categories except the start symbol."""
		newgrammar = grammar.split(self.noise, registry=self.registry)
		self.registry.checklineage(newgrammar)
		logging.info('split grammar: %d symbols, %d rules',
				len(newgrammar.vocabulary), newgrammar.totalrules())
		return newgrammar

	def merge(self, grammar, counts):
		"""Merge the fraction of sibling variants with the lowest cost.

		:param counts: FractionalCountGrammar of the last E-step, whose
			parent counts give the relative frequency of variants."""
		pairs = siblings(grammar.vocabulary)
		nmerge = int(len(pairs) * self.params.mergefraction)
		if nmerge == 0:
			return grammar
		parentcounts = (np.ones(len(grammar.vocabulary)) if counts is None
				else counts.parentcounts())
		cost = np.asarray(self.mergecost(self, grammar, pairs, parentcounts))
		order = np.argsort(cost, kind='stable')
		groups = [pairs[n] for n in order[:nmerge]]
		logging.debug('merging: %s', ', '.join('%s/%s' % (
				grammar.vocabulary.labels[a], grammar.vocabulary.labels[b])
				for a, b in groups))
		newgrammar = grammar.merge(groups, parentcounts)
		logging.info('merged %d of %d splits: %d symbols, %d rules', nmerge,
				len(pairs), len(newgrammar.vocabulary), newgrammar.totalrules())
		return newgrammar

	def train(self):
		"""Run all split/merge cycles.

		:returns: a TrainResult with the final grammar, the corpus log
			likelihood of each EM iteration, and the total number of skipped
			sentences."""
		params = self.params
		grammar = self.basegrammar
		if params.embeforesplit:
			grammar, _ = self.em(grammar, 1)
		for cycle in range(1, params.cycles + 1):
			logging.info('split/merge cycle %d', cycle)
			grammar = self.split(grammar)
			grammar, counts = self.em(grammar, params.emiterations)
			if params.mergefraction > 0:
				grammar = self.merge(grammar, counts)
				grammar, _ = self.em(grammar, params.emiterationsaftermerge)
			logsummary(grammar, 'cycle %d grammar' % cycle)
			if params.resultdir is not None:
				filename = os.path.join(params.resultdir, 'sm%d.gr.gz' % cycle)
				writegrammar(grammar, filename)
				logging.info('wrote grammar to %s', filename)
		if self.loglikelihoods:
			logging.info('final log likelihood: %.4f',
					self.loglikelihoods[-1])
		if self.failures:
			logging.warning('%d sentences skipped in total.', self.failures)
		return TrainResult(grammar, list(self.loglikelihoods), self.failures)


def siblings(vocabulary):
	"""Return pairs of ids ``(n, n + 1)`` that are the two halves of the most
	recent split of a variant, i.e., sub-indices ``2k`` and ``2k + 1``."""
	return [(n, n + 1) for n in range(len(vocabulary) - 1)
			if vocabulary.splitbase[vocabulary.base[n]]
			and vocabulary.base[n] == vocabulary.base[n + 1]
			and vocabulary.subindex[n] % 2 == 0
			and vocabulary.subindex[n + 1] == vocabulary.subindex[n] + 1]


__all__ = ['DEFAULTS', 'getparams', 'readparam', 'setuplogging',
		'initworker', 'mpworker', 'worker', 'logsplitfraction',
		'likelihoodloss', 'SplitMergeTrainer', 'siblings', 'EmResult',
		'TrainResult']
