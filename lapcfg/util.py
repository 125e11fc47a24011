"""Misc code to avoid cyclic imports."""
import sys
import gzip
import traceback
from functools import wraps
import numpy as np


def workerfunc(func):
	"""Wrap a multiprocessing worker function to produce a full traceback."""
	@wraps(func)
	def wrapper(*args, **kwds):
		"""Apply decorated function."""
		try:
			return func(*args, **kwds)
		except Exception:  # pylint: disable=W0703
			# Put traceback as string into an exception and raise that
			raise Exception('in worker process\n%s' %
					''.join(traceback.format_exception(*sys.exc_info())))
	return wrapper


def openread(filename, encoding='utf8'):
	"""Open stdin/file for reading; decompress gz files on-the-fly.

	:param encoding: if None, mode is binary; otherwise, text."""
	mode = 'rb' if encoding is None else 'rt'
	if filename == '-':
		return open(sys.stdin.fileno(), mode=mode, encoding=encoding)
	if filename.endswith('.gz'):
		return gzip.open(filename, mode=mode, encoding=encoding)
	return open(filename, mode=mode, encoding=encoding)


def openwrite(filename, encoding='utf8'):
	"""Open file for writing; compress with gzip if filename ends in .gz."""
	if filename == '-':
		return open(sys.stdout.fileno(), mode='wt', encoding=encoding,
				closefd=False)
	if filename.endswith('.gz'):
		return gzip.open(filename, mode='wt', encoding=encoding)
	return open(filename, mode='wt', encoding=encoding)


class DictObj(object):
	"""Trivial class to wrap a dictionary for reasons of syntactic sugar."""

	def __init__(self, *args, **kwds):
		self.__dict__.update(*args, **kwds)

	def update(self, *args, **kwds):
		"""Update/add more attributes."""
		self.__dict__.update(*args, **kwds)

	def __getattr__(self, name):
		"""Dummy function for suppressing pylint E1101 errors."""
		raise AttributeError('%r instance has no attribute %r.\n'
				'Available attributes: %r' % (
				self.__class__.__name__, name, list(self.__dict__.keys())))

	def __repr__(self):
		return '%s(%s)' % (self.__class__.__name__,
			',\n\t'.join('%s=%r' % a for a in self.__dict__.items()))


def logmaxarg(a):
	"""Return ``(max, index)`` for the maximum of a flattened array.

	Ties go to the lowest index.

	>>> logmaxarg(np.array([-1.0, -0.5, -0.5]))
	(-0.5, 1)
	"""
	a = np.asarray(a)
	idx = int(np.argmax(a))
	return float(a.reshape(-1)[idx]), idx


__all__ = ['workerfunc', 'openread', 'openwrite', 'DictObj', 'logmaxarg']
