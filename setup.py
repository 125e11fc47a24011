"""Setup for lapcfg."""
import sys
from setuptools import setup
from lapcfg import __version__

with open('README.rst') as inp:
	README = inp.read()

REQUIRES = [
		'numpy',  # '>=1.17'
		'scipy',  # '>=1.0'
		'roaringbitmap',  # '>=0.7'
		]
METADATA = dict(name='lapcfg',
		version=__version__,
		description='Split/merge training of latent-annotation PCFGs',
		long_description=README,
		classifiers=[
				'Development Status :: 3 - Alpha',
				'Environment :: Console',
				'Intended Audience :: Science/Research',
				'Operating System :: POSIX',
				'Programming Language :: Python :: 3',
				'Topic :: Text Processing :: Linguistic',
		],
		packages=['lapcfg'],
		python_requires='>=3.8',
		install_requires=REQUIRES,
		extras_require={'test': ['pytest']},
		entry_points={'console_scripts': ['lapcfg = lapcfg.cli:main']},
	)

if __name__ == '__main__':
	if sys.version_info[:2] < (3, 8):
		raise RuntimeError('Python version 3.8+ required.')
	setup(**METADATA)
