"""Labeled trees for binarized treebank input and annotated output."""
# This is an adaptation of the original tree.py file from NLTK.
# Removed: probabilistic, parented & immutable trees, tree positions,
# discontinuous constituents, drawing, &c.
# Original notice:
# Natural Language Toolkit: Text Trees
#
# Copyright (C) 2001-2010 NLTK Project
# Author: Edward Loper <edloper@gradient.cis.upenn.edu>
#         Steven Bird <sb@csse.unimelb.edu.au>
#         Nathan Bodenstab <bodenstab@cslu.ogi.edu> (tree transforms)
# URL: <http://www.nltk.org/>
# For license information, see LICENSE.TXT
import re
from .util import openread


class Tree(object):
	"""A mutable, labeled, n-ary tree structure.

	A tree's children are a list of leaves and subtrees, where a leaf is a
	word (a string) and a subtree is a nested Tree.

	The constructor can be called in two ways:

	- ``Tree(label, children)`` constructs a new tree with the specified label
		and list of children.
	- ``Tree(s)`` constructs a new tree by parsing the string s. Equivalent to
		calling the class method ``Tree.parse(s)``.

	>>> tree = Tree('(S (NP (DT the) (NN dog)) (VP (VB barks)))')
	>>> tree.label, len(tree), tree.leaves()
	('S', 2, ['the', 'dog', 'barks'])
	>>> print(tree[1])
	(VP (VB barks))
	"""

	__slots__ = ('label', 'children')

	def __new__(cls, label_or_str=None, children=None):
		if label_or_str is None:
			return object.__new__(cls)  # used by copy.deepcopy
		if children is None:
			if not isinstance(label_or_str, str):
				raise TypeError("%s: Expected a label and child list "
						"or a single string; got: %s" % (
						cls.__name__, type(label_or_str)))
			return cls.parse(label_or_str)
		if isinstance(children, str) or not hasattr(children, '__iter__'):
			raise TypeError("%s() argument 2 should be a list, not a "
					"string" % cls.__name__)
		return object.__new__(cls)

	def __init__(self, label_or_str, children=None):
		# __new__ may delegate to Tree.parse(), in which case __init__ is
		# called a second time with children=None; ignore that call.
		if children is None:
			return
		self.label = label_or_str
		self.children = list(children)

	def __eq__(self, other):
		if not isinstance(other, Tree):
			return False
		return (self.label == other.label
				and self.children == other.children)

	def __ne__(self, other):
		return not self.__eq__(other)

	__hash__ = None

	def __iter__(self):
		return self.children.__iter__()

	def __len__(self):
		return self.children.__len__()

	def __getitem__(self, index):
		return self.children[index]

	def leaves(self):
		""":returns: list containing this tree's leaves.

		The order reflects the order of the tree's hierarchical structure."""
		leaves = []
		for child in self.children:
			if isinstance(child, Tree):
				leaves.extend(child.leaves())
			else:
				leaves.append(child)
		return leaves

	def subtrees(self, condition=None):
		"""Yield subtrees of this tree in depth-first, pre-order traversal.

		:param condition: a function ``Tree -> bool`` to filter which nodes are
			yielded (does not affect whether children are visited)."""
		agenda = [self]
		while agenda:
			node = agenda.pop()
			if isinstance(node, Tree):
				if condition is None or condition(node):
					yield node
				agenda.extend(node[::-1])

	def postorder(self, condition=None):
		"""A generator that does a post-order traversal of this tree.

		:yields: Tree objects."""
		agenda = [self]
		visited = set()
		while agenda:
			node = agenda[-1]
			if not isinstance(node, Tree):
				agenda.pop()
			elif id(node) in visited:
				agenda.pop()
				if condition is None or condition(node):
					yield node
			else:
				agenda.extend(node[::-1])
				visited.add(id(node))

	def ispreterminal(self):
		"""True if this node dominates exactly one word."""
		return len(self.children) == 1 and not isinstance(
				self.children[0], Tree)

	@classmethod
	def parse(cls, s, brackets='()'):
		"""Parse a bracketed tree string and return the resulting tree.
		Trees are represented as nested bracketings, such as:
		``(S (NP (NNP John)) (VP (V runs)))``

		:param s: The string to parse
		:param brackets: The two bracket characters used to mark the
			beginning and end of trees and subtrees.
		:returns: A tree corresponding to the string representation s.
		:raises ValueError: if the string is not a single well-formed tree."""
		if not isinstance(brackets, str) or len(brackets) != 2:
			raise TypeError('brackets must be a length-2 string')
		if re.search(r'\s', brackets):
			raise TypeError('whitespace brackets not allowed')
		open_b, close_b = brackets[:1], brackets[1:]
		open_pattern, close_pattern = (re.escape(open_b), re.escape(close_b))
		label_pattern = r'[^\s%s%s]+' % (open_pattern, close_pattern)
		leaf_pattern = r'[^\s%s%s]+' % (open_pattern, close_pattern)
		token_re = re.compile(r'%s\s*(%s)?|%s|(%s)' % (
				open_pattern, label_pattern, close_pattern, leaf_pattern))
		# Walk through each token, updating a stack of trees.
		stack = [(None, [])]  # list of (label, children) tuples
		for match in token_re.finditer(s):
			token = match.group()
			if token[0] == open_b:  # Beginning of a tree/subtree
				if len(stack) == 1 and len(stack[0][1]) > 0:
					cls._parse_error(s, match, 'end-of-string')
				label = token[1:].lstrip()
				stack.append((label, []))
			elif token == close_b:  # End of a tree/subtree
				if len(stack) == 1:
					if len(stack[0][1]) == 0:
						cls._parse_error(s, match, open_b)
					else:
						cls._parse_error(s, match, 'end-of-string')
				label, children = stack.pop()
				stack[-1][1].append(cls(label, children))
			else:  # Leaf node
				if len(stack) == 1:
					cls._parse_error(s, match, open_b)
				stack[-1][1].append(token)
		# check that we got exactly one complete tree.
		if len(stack) > 1:
			cls._parse_error(s, 'end-of-string', close_b)
		elif len(stack[0][1]) == 0:
			cls._parse_error(s, 'end-of-string', open_b)
		return stack[0][1][0]

	@classmethod
	def _parse_error(cls, orig, match, expecting):
		"""Display a friendly error message when parsing a tree string fails.

		:param orig: The string we're parsing.
		:param match: regexp match of the problem token.
		:param expecting: what we expected to see instead."""
		if match == 'end-of-string':
			pos, token = len(orig), 'end-of-string'
		else:
			pos, token = match.start(), match.group()
		msg = '%s.parse(): expected %r but got %r\n%sat index %d.' % (
			cls.__name__, expecting, token, ' ' * 12, pos)
		# Add a display showing the error token itself:
		s = orig.replace('\n', ' ').replace('\t', ' ')
		offset = pos
		if len(s) > pos + 10:
			s = s[:pos + 10] + '...'
		if pos > 10:
			s = '...' + s[pos - 10:]
			offset = 13
		msg += '\n%s"%s"\n%s^' % (' ' * 16, s, ' ' * (17 + offset))
		raise ValueError(msg)

	def __repr__(self):
		childstr = ", ".join(repr(c) for c in self)
		return '%s(%r, [%s])' % (self.__class__.__name__, self.label, childstr)

	def __str__(self):
		return self._pprint_flat('()')

	def pprint(self, margin=70, indent=0, brackets='()'):
		"""	:returns: A pretty-printed string representation of this tree.
		:param margin: The right margin at which to do line-wrapping.
		:param indent: The indentation level at which printing begins. This
			number is used to decide how far to indent subsequent lines."""
		s = self._pprint_flat(brackets)
		if len(s) + indent < margin:
			return s
		s = '%s%s' % (brackets[0], self.label)
		for child in self.children:
			if isinstance(child, Tree):
				s += '\n' + ' ' * (indent + 2) + child.pprint(margin,
						indent + 2, brackets)
			else:
				s += '\n' + ' ' * (indent + 2) + '%s' % child
		return s + brackets[1]

	def _pprint_flat(self, brackets):
		"""Pretty-printing helper function."""
		childstrs = []
		for child in self.children:
			if isinstance(child, Tree):
				childstrs.append(child._pprint_flat(brackets))
			else:
				childstrs.append('%s' % child)
		return '%s%s %s%s' % (brackets[0], self.label,
				' '.join(childstrs), brackets[1])


def isbinarized(tree):
	"""Test whether every node has at most two children and words occur
	only as the single child of a preterminal.

	>>> isbinarized(Tree('(S (A (B x)) (C y))'))
	True
	>>> isbinarized(Tree('(S (A x) (B y) (C z))'))
	False
	>>> isbinarized(Tree('(S (A x) y)'))
	False
	"""
	for node in tree.subtrees():
		if not 1 <= len(node) <= 2:
			return False
		if len(node) == 2 and not all(
				isinstance(child, Tree) for child in node):
			return False
	return True


def readtrees(filename, encoding='utf8'):
	"""Read a treebank with one bracketed tree per line.

	Blank lines are skipped.

	:returns: a list of Tree objects.
	:raises ValueError: for a malformed line; the message includes the line
		number."""
	result = []
	with openread(filename, encoding=encoding) as inp:
		for n, line in enumerate(inp, 1):
			if not line.strip():
				continue
			try:
				result.append(Tree.parse(line))
			except ValueError as err:
				raise ValueError('%s: line %d: %s' % (filename, n, err))
	return result


__all__ = ['Tree', 'isbinarized', 'readtrees']
