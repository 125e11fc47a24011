"""Unit tests for lapcfg modules."""
# pylint: disable=C0111,W0232
import re
import random
from math import log
import numpy as np
import pytest
from lapcfg.tree import Tree, isbinarized, readtrees
from lapcfg.vocabulary import Vocabulary, Lexicon, SplitMergeError
from lapcfg.counts import StringCountGrammar, FractionalCountGrammar
from lapcfg.grammar import ProductionListGrammar, Production, \
		BiasedNoiseGenerator, RandomNoiseGenerator, GrammarRegistry, \
		writegrammar, readgrammar, parsegrammar, grammarstr
from lapcfg.sparse import PackingFunction, SparseMatrixGrammar
from lapcfg.chart import ConstrainingChart, ConstrainedChart, ParseFailure
from lapcfg.trainer import SplitMergeTrainer, getparams, readparam, \
		siblings, logsplitfraction
from lapcfg import cli

FIXTURE = '(top (a (a (a (c e) (c e)) (d f)) (b (b (d f)) (c f))))'
TREEBANK = [FIXTURE,
		'(top (a (c e) (c f)))',
		'(top (a (a (c f) (c e)) (b (d f))))',
		'(top (a (a (c e) (c e)) (b (b (d f)) (c e))))']


def fixturegrammar():
	return ProductionListGrammar.fromcounts(
			StringCountGrammar([Tree(FIXTURE)]))


def spans(tree):
	"""Return the set of (start, end) spans of the nodes of a tree."""
	result = set()

	def visit(node, start):
		if not isinstance(node, Tree):
			return start + 1
		end = start
		for child in node:
			end = visit(child, end)
		result.add((start, end))
		return end

	visit(tree, 0)
	return result


class Test_tree(object):
	def test_parse(self):
		tree = Tree(FIXTURE)
		assert str(tree) == FIXTURE
		assert tree.leaves() == ['e', 'e', 'f', 'f', 'f']
		assert [a.label for a in tree.subtrees()][:4] == [
				'top', 'a', 'a', 'a']
		assert [a.label for a in tree.postorder()][:3] == ['c', 'c', 'a']
		with pytest.raises(ValueError):
			Tree('(S (A x)')

	def test_isbinarized(self):
		assert isbinarized(Tree(FIXTURE))
		assert not isbinarized(Tree('(S (A x) (B y) (C z))'))

	def test_readtrees(self, tmp_path):
		filename = str(tmp_path / 'treebank.txt')
		with open(filename, 'w') as out:
			out.write('\n'.join(TREEBANK) + '\n\n')
		trees = readtrees(filename)
		assert len(trees) == len(TREEBANK)
		assert str(trees[1]) == TREEBANK[1]


class Test_vocabulary(object):
	def test_split(self):
		vocab = Vocabulary(['top', 'a', 'b'])
		split, remap = vocab.split()
		assert len(split) == 5
		assert remap == [(0, ), (1, 2), (3, 4)]
		assert split.labels == ('top', 'a_0', 'a_1', 'b_0', 'b_1')
		assert list(split.variants(1)) == [1, 2]
		split2, remap = split.split([2])
		assert split2.labels == ('top', 'a_0', 'a_1', 'a_2', 'b_0', 'b_1')
		assert remap == [(0, ), (1, ), (2, 3), (4, ), (5, )]
		assert split2.compatible(vocab)

	def test_merge(self):
		split, _ = Vocabulary(['top', 'a', 'b']).split()
		split, _ = split.split()
		assert split.labels[1:5] == ('a_0', 'a_1', 'a_2', 'a_3')
		merged, remap = split.merge([(1, 2), (5, 6)])
		assert merged.labels == ('top', 'a_0', 'a_1', 'a_2', 'b_0', 'b_1',
				'b_2')
		assert remap == [0, 1, 1, 2, 3, 4, 4, 5, 6]
		assert list(range(len(merged))) == sorted(set(remap))

	def test_errors(self):
		vocab = Vocabulary(['top', 'a', 'b'])
		with pytest.raises(SplitMergeError):
			vocab.split([0])
		with pytest.raises(SplitMergeError):
			vocab.split([7])
		with pytest.raises(SplitMergeError):
			vocab.merge([(1, 2)])
		with pytest.raises(SplitMergeError):
			vocab.merge([(5, 6)])
		with pytest.raises(ValueError):
			vocab.index('x')
		with pytest.raises(ValueError):
			Vocabulary(['top', 'a', 'a'])

	def test_lexicon(self):
		lexicon = Lexicon(['e', 'f'])
		assert lexicon.index('e') == 0 and 'f' in lexicon
		with pytest.raises(ValueError):
			lexicon.index('g')


class Test_countgrammar(object):
	def test_fixture(self):
		counts = StringCountGrammar([Tree(FIXTURE)])
		assert len(counts.vocabulary()) == 5
		assert len(counts.lexicon()) == 2
		assert counts.binaryrules() == 4
		assert counts.unaryrules() == 2
		assert counts.lexicalrules() == 3
		assert counts.totalrules() == 9
		assert counts.totalrules() == (counts.binaryrules()
				+ counts.unaryrules() + counts.lexicalrules())
		assert counts.binaryruleobservations('a', 'a', 'b') == 1
		assert counts.lexicalruleobservations('c', 'e') == 2
		assert counts.unaryruleobservations('b', 'd') == 1
		assert counts.observations('c') == 3

	def test_order(self):
		counts = StringCountGrammar([Tree(FIXTURE)])
		assert counts.vocabulary().labels == ('top', 'a', 'b', 'c', 'd')
		assert counts.vocabulary('observed').labels == (
				'top', 'a', 'c', 'd', 'b')
		with pytest.raises(ValueError):
			counts.vocabulary('alphabetical')

	def test_incremental(self):
		counts = StringCountGrammar()
		counts.add(Tree(TREEBANK[1]))
		assert counts.totalrules() == 4
		counts.add(Tree(FIXTURE))
		assert counts.totalrules() == 9
		with pytest.raises(ValueError):
			counts.add(Tree('(S (c e) (c f))'))
		with pytest.raises(ValueError):
			counts.add(Tree('(top (c e) (c f) (c e))'))

	def test_probabilities(self):
		gram = fixturegrammar()
		assert gram.totalrules() == 9
		assert np.isclose(gram.unarylogprob('top', 'a'), 0.0)
		assert np.isclose(gram.binarylogprob('a', 'a', 'b'), log(1 / 3))
		assert np.isclose(gram.binarylogprob('b', 'b', 'c'), log(1 / 2))
		assert np.isclose(gram.lexicallogprob('c', 'e'), log(2 / 3))
		assert np.isclose(gram.lexicallogprob('c', 'f'), log(1 / 3))
		assert gram.lexicallogprob('d', 'e') == -np.inf

	def test_fractional(self):
		gram = fixturegrammar()
		sparse = SparseMatrixGrammar(gram)
		chart = ConstrainedChart(ConstrainingChart(
				Tree(FIXTURE), gram.vocabulary, gram.lexicon), sparse)
		chart.inside()
		counts = FractionalCountGrammar(sparse)
		counts.add(chart.counts())
		vocab = gram.vocabulary
		a, b, c, d = (vocab.index(x) for x in 'abcd')
		assert np.isclose(counts.binaryruleobservations(a, a, b), 1.0)
		assert np.isclose(counts.lexicalruleobservations(
				c, gram.lexicon.index('e')), 2.0)
		assert counts.binaryruleobservations(c, c, c) == 0.0
		assert np.isclose(counts.observations(c), 3.0)
		assert counts.totalrules() == 9
		other = FractionalCountGrammar(sparse)
		other.add(chart.counts())
		counts.update(other)
		assert np.isclose(counts.unaryruleobservations(b, d), 2.0)
		assert counts.totalrules() == (counts.binaryrules()
				+ counts.unaryrules() + counts.lexicalrules())
		# M-step reproduces relative frequencies
		newgram = counts.productionlistgrammar()
		assert np.isclose(newgram.lexicallogprob('c', 'e'), log(2 / 3))
		assert np.isclose(newgram.binarylogprob('a', 'c', 'c'), log(1 / 3))

	def test_smooth(self):
		gram = fixturegrammar().split(RandomNoiseGenerator(0.2, seed=3))
		sparse = SparseMatrixGrammar(gram)
		chart = ConstrainedChart(ConstrainingChart(
				Tree(FIXTURE), gram.vocabulary, gram.lexicon), sparse)
		chart.inside()
		counts = FractionalCountGrammar(sparse)
		counts.add(chart.counts())
		wordcounts = np.array([2.0, 2.0])
		smoothed = counts.smooth(wordcounts, uncommonthreshold=100,
				smoothcommon=1.0, smoothuncommon=2.0)
		assert not np.allclose(smoothed.lexical, counts.lexical)
		assert np.array_equal(smoothed.binary, counts.binary)
		# the count of each word with each category is preserved
		vocab = gram.vocabulary
		for word in range(len(gram.lexicon)):
			for base in range(len(vocab.baselabels)):
				mask = ((sparse.lexword == word)
						& (vocab.base[sparse.lexparent] == base))
				assert np.isclose(smoothed.lexical[mask].sum(),
						counts.lexical[mask].sum())
		# variants of a category move towards each other
		c = vocab.baseindex('c')
		e = gram.lexicon.index('e')
		before = [counts.lexicalruleobservations(n, e)
				/ counts.observations(n) for n in vocab.variants(c)]
		after = [smoothed.lexicalruleobservations(n, e)
				/ smoothed.observations(n) for n in vocab.variants(c)]
		assert abs(after[0] - after[1]) < abs(before[0] - before[1])
		# smoothed distributions are still normalized per parent
		newgram = smoothed.productionlistgrammar()
		totals = np.zeros(len(vocab))
		for prods in (newgram.binary, newgram.unary, newgram.lexical):
			for prod in prods:
				totals[prod.parent] += np.exp(prod.prob)
		assert np.allclose(totals, 1.0)
		# zero weights disable smoothing
		same = counts.smooth(wordcounts, 100, 0.0, 0.0)
		assert np.array_equal(same.lexical, counts.lexical)


class Test_grammar(object):
	def test_split(self):
		gram = fixturegrammar()
		split = gram.split(BiasedNoiseGenerator(0.01))
		assert len(split.vocabulary) == 9
		assert split.binaryrules() == 32
		assert split.unaryrules() == 6
		assert split.lexicalrules() == 6
		assert np.isclose(split.lexicallogprob('c_1', 'e'), log(2 / 3))
		assert np.isclose(split.unarylogprob('top', 'a_0'),
				log(0.5) + np.log1p(0.01))
		# every parent variant is still a distribution
		for parent in range(len(split.vocabulary)):
			total = sum(np.exp(p.prob) for prods in (
					split.binary, split.unary, split.lexical)
					for p in prods if p.parent == parent)
			assert np.isclose(total, 1.0)

	def test_split_errors(self):
		gram = fixturegrammar()
		noise = BiasedNoiseGenerator(0.01)
		with pytest.raises(SplitMergeError):
			gram.split(noise, ['e'])
		with pytest.raises(SplitMergeError):
			gram.split(noise, ['top'])
		with pytest.raises(SplitMergeError):
			gram.split(noise, ['x'])
		with pytest.raises(SplitMergeError):
			gram.merge([['a', 'b']])
		with pytest.raises(SplitMergeError):
			gram.merge([[17, 18]])

	def test_split_merge_marginals(self):
		gram = fixturegrammar()
		split = gram.split(RandomNoiseGenerator(0.2, seed=3))
		marginals = gram.marginals()
		for key, prob in split.marginals().items():
			assert np.isclose(prob, marginals[key])
		weights = np.arange(1, len(split.vocabulary) + 1, dtype=float)
		merged = split.merge(siblings(split.vocabulary), weights)
		assert len(merged.vocabulary) == len(gram.vocabulary)
		assert merged.totalrules() == gram.totalrules()
		result = merged.marginals()
		assert set(result) == set(marginals)
		for key, prob in result.items():
			assert np.isclose(prob, marginals[key])

	def test_noise(self):
		noise1 = RandomNoiseGenerator(0.01, seed=42).noise(100)
		noise2 = RandomNoiseGenerator(0.01, seed=42).noise(100)
		assert noise1.tolist() == noise2.tolist()
		assert np.allclose(np.exp(noise1[0::2]) + np.exp(noise1[1::2]), 2)
		with pytest.raises(ValueError):
			noise1 = RandomNoiseGenerator(0.01, seed=42).noise(3)
		assert np.allclose(BiasedNoiseGenerator(0).noise(4), 0)

	def test_registry(self):
		registry = GrammarRegistry()
		gram = fixturegrammar()
		split = gram.split(BiasedNoiseGenerator(0.01), registry=registry)
		assert registry[split.ancestor] is gram
		assert registry.ancestor(split) is gram
		registry.checklineage(split)
		assert split.split(BiasedNoiseGenerator(0.01),
				registry=registry).ancestor == 1
		other = ProductionListGrammar(Vocabulary(['top', 'x']), gram.lexicon,
				ancestor=split.ancestor)
		with pytest.raises(ValueError):
			registry.checklineage(other)

	def test_roundtrip(self, tmp_path):
		gram = fixturegrammar().split(RandomNoiseGenerator(0.01, seed=1))
		filename = str(tmp_path / 'grammar.gr.gz')
		writegrammar(gram, filename)
		newgram = readgrammar(filename)
		assert newgram.vocabulary == gram.vocabulary
		assert newgram.lexicon == gram.lexicon
		assert grammarstr(newgram) == grammarstr(gram)
		assert newgram.binary == gram.binary

	def test_malformed(self):
		with pytest.raises(ValueError):
			parsegrammar(['binary', 'a\tb\tc'])
		with pytest.raises(ValueError):
			parsegrammar(['vocabulary', 'top\ttop\t0', 'a\ta\t0',
					'unary', 'top\ta\tone'])
		with pytest.raises(ValueError):
			parsegrammar(['vocabulary', 'top\ttop\t0', 'a\ta\t0',
					'unary', 'top\tb\t0.0'])
		for prob in ('nan', 'inf', '-inf', '5.0'):
			with pytest.raises(ValueError, match='line 5'):
				parsegrammar(['vocabulary', 'top\ttop\t0', 'a\ta\t0',
						'unary', 'top\ta\t%s' % prob])
		with pytest.raises(ValueError):
			parsegrammar(['vocabulary', 'top\ttop\t0', 'a\ta\t0',
					'lexicon', 'x', 'lexical', 'a\tx\t0.5'])
		with pytest.raises(ValueError):
			parsegrammar(['a\ta\t0'])
		with pytest.raises(ValueError):
			ProductionListGrammar(Vocabulary(['top']), Lexicon([]),
					unary=[Production(0, 3, None, 0.0)])


class Test_sparse(object):
	def test_packing(self):
		pairs = [(1, 2), (0, 3), (1, 2), (3, 3)]
		pf = PackingFunction([a for a, _ in pairs], [b for _, b in pairs], 4)
		assert len(pf) == 3
		packed = [pf.pack(a, b) for a, b in sorted(set(pairs))]
		assert packed == [0, 1, 2]
		assert [pf.unpack(n) for n in packed] == sorted(set(pairs))
		assert pf.pack(2, 2) == -1
		assert pf.packarray([3, 2], [3, 2]).tolist() == [2, -1]

	def test_ranges(self):
		gram = fixturegrammar().split(RandomNoiseGenerator(0.01, seed=2))
		sparse = SparseMatrixGrammar(gram)
		nsym = len(gram.vocabulary)
		source = {(p.parent, p.left, p.right) for p in gram.binary}
		for parent in range(nsym):
			for left in range(nsym):
				start, end = sparse.binaryrange(parent, left)
				inrange = {(parent, left, int(sparse.binright[n]))
						for n in range(start, end)}
				assert all(sparse.binparent[n] == parent
						and sparse.binleft[n] == left
						for n in range(start, end))
				assert inrange == {rule for rule in source
						if rule[:2] == (parent, left)}
				start, end = sparse.parentrange(parent, left)
				assert {(int(sparse.binparent[n]), int(sparse.binleft[n]),
						int(sparse.binright[n])) for n in range(start, end)
						} == {rule for rule in source
							if rule[0] == parent and rule[1] >= left}
		for p in gram.binary:
			idx = sparse.binaryindex(p.parent, p.left, p.right)
			assert sparse.binprob[idx] == p.prob
			assert sparse.packing.unpack(sparse.binpacked[idx]) == (
					p.left, p.right)
		for p in gram.unary:
			assert sparse.unprob[sparse.unaryindex(p.parent, p.left)] == p.prob
		for p in gram.lexical:
			assert sparse.lexprob[sparse.lexicalindex(p.parent, p.left)
					] == p.prob

	def test_blocks(self):
		gram = fixturegrammar().split(RandomNoiseGenerator(0.01, seed=2))
		gram = gram.split(RandomNoiseGenerator(0.01, seed=3), ids=['a_0'])
		sparse = SparseMatrixGrammar(gram)
		vocab = gram.vocabulary
		source = {(p.parent, p.left, p.right): p.prob for p in gram.binary}
		nbase = len(vocab.baselabels)
		found = 0
		for pbase in range(nbase):
			for lbase in range(nbase):
				for rbase in range(nbase):
					logprob, ruleidx = sparse.binaryblock(pbase, lbase, rbase)
					for i, parent in enumerate(vocab.variants(pbase)):
						for j, left in enumerate(vocab.variants(lbase)):
							for k, right in enumerate(vocab.variants(rbase)):
								key = parent, left, right
								if key in source:
									found += 1
									assert logprob[i, j, k] == source[key]
									assert ruleidx[i, j, k] == (
											sparse.binaryindex(*key))
									col = sparse.binpacked[ruleidx[i, j, k]]
									assert sparse.packing.unpack(col) == (
											left, right)
								else:
									assert logprob[i, j, k] == -np.inf
									assert ruleidx[i, j, k] == -1
		assert found == len(gram.binary)
		assert sparse.binaryindex(0, 0, 0) == -1

	def test_deterministic(self):
		gram = fixturegrammar().split(RandomNoiseGenerator(0.01, seed=2))
		binary, unary, lexical = (list(gram.binary), list(gram.unary),
				list(gram.lexical))
		rng = random.Random(1)
		for prods in (binary, unary, lexical):
			rng.shuffle(prods)
		shuffled = ProductionListGrammar(gram.vocabulary, gram.lexicon,
				binary, unary, lexical)
		sparse1, sparse2 = SparseMatrixGrammar(gram), SparseMatrixGrammar(
				shuffled)
		for name in ('binparent', 'binleft', 'binright', 'binprob',
				'binpacked', 'binoffsets',
				'unparent', 'unchild', 'unprob', 'lexparent', 'lexword',
				'lexprob', 'lexoffsets'):
			assert getattr(sparse1, name).tobytes() == getattr(
					sparse2, name).tobytes()
		assert sparse1.packing.keys.tobytes() == sparse2.packing.keys.tobytes()

	def test_duplicates(self):
		gram = fixturegrammar()
		dup = ProductionListGrammar(gram.vocabulary, gram.lexicon,
				gram.binary + gram.binary[:1], gram.unary, gram.lexical)
		with pytest.raises(ValueError):
			SparseMatrixGrammar(dup)


class Test_chart(object):
	def test_opencells(self):
		gram = fixturegrammar()
		for treestr in TREEBANK:
			tree = Tree(treestr)
			chart = ConstrainingChart(tree, gram.vocabulary, gram.lexicon)
			assert len(chart) == 2 * len(tree.leaves()) - 1
			assert set(chart.cells) == spans(tree)
			assert len(set(chart.cells)) == len(chart.cells)
		chart = ConstrainingChart(Tree(FIXTURE), gram.vocabulary, gram.lexicon)
		assert chart.isopen(0, 5) and chart.isopen(3, 4)
		assert not chart.isopen(1, 3)
		vocab = gram.vocabulary
		assert chart.chains[chart.cells.index((3, 4))] == (
				vocab.index('b'), vocab.index('d'))
		split = gram.split(BiasedNoiseGenerator(0.01)).vocabulary
		assert [list(a) for a in chart.licensed(3, 4, split)] == [
				list(split.variants(vocab.index('b'))),
				list(split.variants(vocab.index('d')))]
		assert chart.licensed(1, 3, split) == []

	def test_errors(self):
		gram = fixturegrammar()
		with pytest.raises(ValueError):
			ConstrainingChart(Tree('(top (a (c e) (c g)))'),
					gram.vocabulary, gram.lexicon)
		with pytest.raises(ValueError):
			ConstrainingChart(Tree('(top (a (c e) (c e) (c e)))'),
					gram.vocabulary, gram.lexicon)
		counts = StringCountGrammar([Tree(FIXTURE)])
		other = ProductionListGrammar.fromcounts(counts, order='observed')
		chart = ConstrainingChart(Tree(FIXTURE), other.vocabulary,
				other.lexicon)
		with pytest.raises(ValueError):
			ConstrainedChart(chart, SparseMatrixGrammar(gram))

	def test_inside(self):
		gram = fixturegrammar()
		chart = ConstrainingChart(Tree(FIXTURE), gram.vocabulary, gram.lexicon)
		expected = (4 * log(1 / 3) + 2 * log(2 / 3) + 2 * log(1 / 2))
		result = ConstrainedChart(chart, SparseMatrixGrammar(gram)).inside()
		assert np.isclose(result, expected)
		# splitting preserves the probability of the tree
		split = gram.split(RandomNoiseGenerator(0.1, seed=5))
		result = ConstrainedChart(chart, SparseMatrixGrammar(split)).inside()
		assert np.isclose(result, expected)
		split = split.split(RandomNoiseGenerator(0.1, seed=6))
		result = ConstrainedChart(chart, SparseMatrixGrammar(split)).inside()
		assert np.isclose(result, expected)

	def test_longsentence(self):
		# right-branching tree over 400 words drawn from 50 word types;
		# the tree probability is far below the smallest positive float
		nwords = 400
		words = ['w%d' % (n % 50) for n in range(nwords)]
		treestr = '(c %s)' % words[-1]
		for word in reversed(words[:-1]):
			treestr = '(a (c %s) %s)' % (word, treestr)
		tree = Tree('(top %s)' % treestr)
		gram = ProductionListGrammar.fromcounts(StringCountGrammar([tree]))
		chart = ConstrainingChart(tree, gram.vocabulary, gram.lexicon)
		assert len(chart) == 2 * nwords - 1
		expected = ConstrainedChart(chart, SparseMatrixGrammar(gram)).inside()
		assert np.isfinite(expected)
		assert expected < np.log(np.finfo(np.float64).tiny)
		split = gram.split(RandomNoiseGenerator(0.1, seed=1)).split(
				RandomNoiseGenerator(0.1, seed=2))
		cchart = ConstrainedChart(chart, SparseMatrixGrammar(split))
		assert np.isclose(cchart.inside(), expected)
		counts = cchart.counts()
		for values in (counts.binval, counts.unval, counts.lexval):
			assert np.all(np.isfinite(values))
		assert np.isclose(counts.binval.sum(), nwords - 1)
		assert np.isclose(counts.unval.sum(), 1)
		assert np.isclose(counts.lexval.sum(), nwords)

	def test_outside(self):
		gram = fixturegrammar().split(RandomNoiseGenerator(0.1, seed=5))
		chart = ConstrainingChart(Tree(FIXTURE), gram.vocabulary, gram.lexicon)
		cchart = ConstrainedChart(chart, SparseMatrixGrammar(gram))
		cchart.outside()
		# inside * outside summed over the variants of any node equals the
		# probability of the tree
		for cell, chain in enumerate(chart.chains):
			for level in range(len(chain)):
				total = np.logaddexp.reduce(cchart.insideprobs[cell][level]
						+ cchart.outsideprobs[cell][level])
				assert np.isclose(total, cchart.loglikelihood)
		counts = cchart.counts()
		assert np.isclose(counts.binval.sum(), 4)
		assert np.isclose(counts.unval.sum(), 2)
		assert np.isclose(counts.lexval.sum(), 5)

	def test_viterbi(self):
		gram = fixturegrammar().split(BiasedNoiseGenerator(0.01))
		tree = Tree(FIXTURE)
		chart = ConstrainingChart(tree, gram.vocabulary, gram.lexicon)
		best, logprob = ConstrainedChart(
				chart, SparseMatrixGrammar(gram)).viterbi()
		assert np.isfinite(logprob)
		assert spans(best) == spans(tree)
		assert best.leaves() == tree.leaves()
		assert best.label == 'top_0'
		for node, gold in zip(best.subtrees(), tree.subtrees()):
			assert re.match(r'^%s_[01]$' % gold.label, node.label)

	def test_failure(self):
		gram = fixturegrammar()
		vocab, lexicon = gram.vocabulary, gram.lexicon
		c, f = vocab.index('c'), lexicon.index('f')
		pruned = ProductionListGrammar(vocab, lexicon, gram.binary,
				gram.unary, [p for p in gram.lexical
					if (p.parent, p.left) != (c, f)])
		chart = ConstrainingChart(Tree(FIXTURE), vocab, lexicon)
		with pytest.raises(ParseFailure):
			ConstrainedChart(chart, SparseMatrixGrammar(pruned)).inside()
		with pytest.raises(ParseFailure):
			ConstrainedChart(chart, SparseMatrixGrammar(pruned)).viterbi()

	def test_mergeloss(self):
		gram = fixturegrammar().split(RandomNoiseGenerator(0.1, seed=5))
		chart = ConstrainingChart(Tree(FIXTURE), gram.vocabulary, gram.lexicon)
		cchart = ConstrainedChart(chart, SparseMatrixGrammar(gram))
		pairs = siblings(gram.vocabulary)
		assert len(pairs) == 4
		lsf = logsplitfraction(gram.vocabulary, pairs,
				np.ones(len(gram.vocabulary)))
		loss = cchart.mergeloss(pairs, lsf)
		assert loss.shape == (4, )
		assert np.all(np.isfinite(loss))


class Test_trainer(object):
	params = dict(cycles=2, emiterations=3, emiterationsaftermerge=2,
			seed=7, verbosity=0)

	def test_train(self):
		trees = [Tree(a) for a in TREEBANK]
		trainer = SplitMergeTrainer(trees, getparams(**self.params))
		result = trainer.train()
		assert result.failures == 0
		assert len(result.loglikelihoods) >= 2
		assert all(np.isfinite(result.loglikelihoods))
		assert result.grammar.vocabulary.compatible(
				trainer.basegrammar.vocabulary)
		assert len(trainer.registry) == 2
		# the trained grammar still derives every tree
		sparse = SparseMatrixGrammar(result.grammar)
		for chart in trainer.charts:
			assert np.isfinite(ConstrainedChart(chart, sparse).inside())

	def test_reproducible(self):
		trees = [Tree(a) for a in TREEBANK]
		result1 = SplitMergeTrainer(trees, getparams(**self.params)).train()
		result2 = SplitMergeTrainer(trees, getparams(**self.params)).train()
		assert result1.loglikelihoods == result2.loglikelihoods
		assert grammarstr(result1.grammar) == grammarstr(result2.grammar)

	def test_parallel(self):
		trees = [Tree(a) for a in TREEBANK]
		params = dict(self.params, cycles=1)
		result1 = SplitMergeTrainer(trees, getparams(**params)).train()
		result2 = SplitMergeTrainer(trees, getparams(numproc=2, **params)
				).train()
		assert result1.loglikelihoods == result2.loglikelihoods

	def test_em(self):
		trees = [Tree(a) for a in TREEBANK]
		trainer = SplitMergeTrainer(trees, getparams(**dict(self.params,
				smoothcommon=0.0, smoothuncommon=0.0)))
		grammar = trainer.split(trainer.basegrammar)
		lls = []
		for _ in range(4):
			result = trainer.emiteration(grammar)
			lls.append(result.loglikelihood)
			grammar = result.grammar
		assert all(b >= a - 1e-8 for a, b in zip(lls, lls[1:]))

	def test_smoothing(self):
		trees = [Tree(a) for a in TREEBANK]
		params = dict(self.params, noise=0.2)
		plain = SplitMergeTrainer(trees, getparams(**dict(params,
				smoothcommon=0.0, smoothuncommon=0.0)))
		smoothed = SplitMergeTrainer(trees, getparams(**params))
		assert smoothed.wordcounts.tolist() == [
				plain.counts.wordcounts[a] for a in ('e', 'f')]
		grammar = plain.split(plain.basegrammar)
		result1 = plain.emiteration(grammar)
		result2 = smoothed.emiteration(grammar)
		assert result1.loglikelihood == result2.loglikelihood
		assert grammarstr(result1.grammar) != grammarstr(result2.grammar)
		vocab = result2.grammar.vocabulary
		totals = np.zeros(len(vocab))
		for prods in (result2.grammar.binary, result2.grammar.unary,
				result2.grammar.lexical):
			for prod in prods:
				totals[prod.parent] += np.exp(prod.prob)
		assert np.allclose(totals, 1.0)
		with pytest.raises(ValueError):
			getparams(smoothuncommon=-1.0)

	def test_failures(self):
		trees = [Tree(FIXTURE), Tree('(top (a (c e) (c e)))')]
		trainer = SplitMergeTrainer(trees, getparams(**self.params))
		gram = trainer.basegrammar
		b, d = gram.vocabulary.index('b'), gram.vocabulary.index('d')
		pruned = ProductionListGrammar(gram.vocabulary, gram.lexicon,
				gram.binary, [p for p in gram.unary
					if (p.parent, p.left) != (b, d)], gram.lexical)
		result = trainer.emiteration(pruned)
		assert result.failures == 1
		assert np.isfinite(result.loglikelihood)

	def test_mergecost(self):
		calls = []

		def zerocost(trainer, grammar, pairs, parentcounts):
			calls.append(len(pairs))
			return np.zeros(len(pairs))

		trees = [Tree(a) for a in TREEBANK]
		trainer = SplitMergeTrainer(trees, getparams(**dict(self.params,
				cycles=1)), mergecost=zerocost)
		result = trainer.train()
		assert calls == [4]
		assert len(result.grammar.vocabulary) == 7

	def test_params(self, tmp_path):
		filename = str(tmp_path / 'train.prm')
		with open(filename, 'w') as out:
			out.write("traincorpus='train.txt',\ncycles=2,\nnoise=0.05")
		params = readparam(filename)
		assert params.cycles == 2 and params.noise == 0.05
		assert params.emiterations == 50
		with open(filename, 'w') as out:
			out.write('cylces=2')
		with pytest.raises(ValueError):
			readparam(filename)
		with pytest.raises(AttributeError):
			params.nonexistent


class Test_cli(object):
	def test_grammar(self, tmp_path, monkeypatch, capsys):
		filename = str(tmp_path / 'grammar.gr')
		writegrammar(fixturegrammar(), filename)
		monkeypatch.setattr(cli, 'argv', ['lapcfg', 'grammar', filename])
		cli.main()
		assert 'rules: 9 binary: 4 unary: 2 lexical: 3' in (
				capsys.readouterr().out)

	def test_train_annotate(self, tmp_path, monkeypatch, capsys):
		treebank = str(tmp_path / 'train.txt')
		resultdir = str(tmp_path / 'results')
		with open(treebank, 'w') as out:
			out.write('\n'.join(TREEBANK) + '\n')
		monkeypatch.setattr(cli, 'argv', ['lapcfg', 'train', treebank,
				resultdir, '--cycles=1', '--emiterations=2',
				'--aftermerge=1', '--verbosity=0'])
		cli.main()
		assert 'log likelihood:' in capsys.readouterr().out
		output = str(tmp_path / 'annotated.txt')
		monkeypatch.setattr(cli, 'argv', ['lapcfg', 'annotate',
				resultdir + '/sm1.gr.gz', treebank, output])
		cli.main()
		annotated = readtrees(output)
		assert len(annotated) == len(TREEBANK)
		assert all(node.label.startswith('%s_' % gold.label)
				for tree, goldstr in zip(annotated, TREEBANK)
				for node, gold in zip(tree.subtrees(),
					Tree(goldstr).subtrees()))

	def test_usage(self, monkeypatch):
		monkeypatch.setattr(cli, 'argv', ['lapcfg', 'nonexistent'])
		with pytest.raises(SystemExit):
			cli.main()
