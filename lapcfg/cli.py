"""Command-line interfaces to modules."""
from sys import argv, stdout, stderr
from sys import exit as sysexit

COMMANDS = {
		'train': 'Train a latent-annotation PCFG with split/merge EM.',
		'grammar': 'Print a summary of a grammar file.',
		'annotate': 'Annotate gold trees with their best latent variants.',
	}


def main():
	"""Expose command-line interfaces."""
	from os.path import basename
	thiscmd = basename(argv[0])
	if len(argv) == 2 and argv[1] in ('-v', '--version'):
		from lapcfg import __version__
		print(__version__)
	elif len(argv) <= 1 or argv[1] not in COMMANDS:
		print('Usage: %s <command> [arguments]\n' % thiscmd, file=stderr)
		print('Command is one of:', file=stderr)
		for a, b in COMMANDS.items():
			print('   %s  %s' % (a.ljust(15), b), file=stderr)
		print('for additional instructions issue: %s <command> --help'
			% thiscmd, file=stderr)
		sysexit(2)
	else:
		globals()[argv[1]]()


def train():
	"""Train a grammar with split/merge EM.
Usage: lapcfg train <treebank> [<resultdir>] [options]
or: lapcfg train --params=<parameter-file> [<resultdir>]

The treebank contains one binarized bracketed tree per line. Grammars of
each cycle are written to <resultdir>/sm<n>.gr.gz.

Options (defaults in parentheses):
  --cycles=n           number of split/merge cycles (6)
  --emiterations=n     EM iterations after each split (50)
  --aftermerge=n       EM iterations after each merge (20)
  --mergefraction=x    fraction of splits to merge back (0.5)
  --noise=x            amount of noise added when splitting (0.01)
  --seed=n             random seed for the noise (0)
  --minimprovement=x   stop EM when log likelihood improves less (1e-4)
  --minrulelogprob=x   prune rules with lower log probability (-140)
  --uncommon=n         words less frequent than n are uncommon (100)
  --smoothcommon=x     lexical smoothing weight for common words (1.0)
  --smoothuncommon=x   lexical smoothing weight for uncommon words (2.0)
  --embeforesplit      run one EM iteration before the first split
  --order=x            symbol order: frequency or observed (frequency)
  --numproc=n          number of processes (1)
  --verbosity=n        0 to 4 (1)"""
	import os
	from getopt import gnu_getopt, GetoptError
	from .tree import readtrees
	from .trainer import readparam, getparams, setuplogging, \
			SplitMergeTrainer
	options = ('help', 'params=', 'cycles=', 'emiterations=', 'aftermerge=',
			'mergefraction=', 'noise=', 'seed=', 'minimprovement=',
			'minrulelogprob=', 'uncommon=', 'smoothcommon=',
			'smoothuncommon=', 'embeforesplit', 'order=', 'numproc=',
			'verbosity=')
	try:
		opts, args = gnu_getopt(argv[2:], 'h', options)
		opts = dict(opts)
		if '-h' in opts or '--help' in opts:
			print(train.__doc__)
			return
		if '--params' in opts:
			if len(args) > 1:
				raise ValueError('expected at most one argument.')
			params = readparam(opts['--params'])
			if args:
				params.resultdir = args[0]
		else:
			if not 1 <= len(args) <= 2:
				raise ValueError('expected treebank and optional resultdir.')
			conv = dict(cycles=int, emiterations=int,
					aftermerge=int, mergefraction=float, noise=float,
					seed=int, minimprovement=float, minrulelogprob=float,
					uncommon=int, smoothcommon=float, smoothuncommon=float,
					order=str, numproc=int, verbosity=int)
			names = dict(aftermerge='emiterationsaftermerge',
					uncommon='uncommonthreshold')
			kwds = {names.get(key, key): func(opts['--' + key])
					for key, func in conv.items() if '--' + key in opts}
			if '--embeforesplit' in opts:
				kwds['embeforesplit'] = True
			params = getparams(traincorpus=args[0],
					resultdir=args[1] if len(args) == 2 else None, **kwds)
	except (GetoptError, IndexError, ValueError) as err:
		print('error: %s' % err, file=stderr)
		print(train.__doc__)
		sysexit(2)
	if params.traincorpus is None:
		print('error: no training corpus specified.', file=stderr)
		sysexit(2)
	if params.resultdir is not None and not os.path.exists(params.resultdir):
		os.mkdir(params.resultdir)
	setuplogging(params.verbosity, params.resultdir)
	trees = readtrees(params.traincorpus)
	result = SplitMergeTrainer(trees, params).train()
	if result.loglikelihoods:
		print('log likelihood: %.4f' % result.loglikelihoods[-1])
	print('skipped sentences: %d' % result.failures)


def grammar():
	"""Print a summary of a grammar.
Usage: lapcfg grammar <grammarfile>"""
	from .grammar import readgrammar, grammarinfo
	if len(argv) != 3 or argv[2] in ('-h', '--help'):
		print(grammar.__doc__)
		sysexit(2)
	print(grammarinfo(readgrammar(argv[2])))


def annotate():
	"""Annotate gold trees with the best variant of each nonterminal.
Usage: lapcfg annotate <grammarfile> <treebank> [<output>]

Trees that are not derivable by the grammar are written unchanged and
reported on stderr."""
	from .grammar import readgrammar
	from .tree import readtrees
	from .util import openwrite
	from .sparse import SparseMatrixGrammar
	from .vocabulary import Vocabulary
	from .chart import ConstrainingChart, ConstrainedChart, ParseFailure
	args = argv[2:]
	if not 2 <= len(args) <= 3 or '-h' in args or '--help' in args:
		print(annotate.__doc__)
		sysexit(2)
	gram = SparseMatrixGrammar(readgrammar(args[0]))
	basevocab = Vocabulary(gram.vocabulary.baselabels)
	out = openwrite(args[2]) if len(args) == 3 else stdout
	try:
		for n, tree in enumerate(readtrees(args[1]), 1):
			chart = ConstrainedChart(ConstrainingChart(
					tree, basevocab, gram.lexicon), gram)
			try:
				best, _ = chart.viterbi()
			except ParseFailure as err:
				print('tree %d: %s' % (n, err), file=stderr)
				best = tree
			out.write('%s\n' % best)
	finally:
		if out is not stdout:
			out.close()


__all__ = ['main', 'train', 'grammar', 'annotate']
