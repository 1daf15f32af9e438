import os
import re

from setuptools import find_packages, setup

VERSION = '0.4.0'


def parse_md_readme():
    """
    pypi won't render markdown. After conversion to rst it will still not render unless raw directives are removed
    """
    try:
        from m2r import parse_from_file

        rst_lines = parse_from_file('README.md').split('\n')
        long_description = []
        i = 0
        while i < len(rst_lines):
            if re.match(r'^..\s+raw::.*', rst_lines[i]):
                i += 1
                while re.match(r'^(\s\s+|\t|$).*', rst_lines[i]):
                    i += 1
            else:
                long_description.append(re.sub('>`_ ', '>`__ ', rst_lines[i]))  # anonymous links
                i += 1
        long_description = '\n'.join(long_description)
    except (ImportError, OSError):
        long_description = ''
    return long_description


# HSTLIB is a dependency for pysam.
# The cram file libraries fail for some OS versions and mutsift does not use cram files so we disable these options
os.environ['HTSLIB_CONFIGURE_OPTIONS'] = '--disable-lzma --disable-bz2 --disable-libcurl'


TEST_REQS = [
    'coverage>=4.2',
    'pytest',
    'pytest-cov',
]


INSTALL_REQS = [
    'biopython>=1.78',
    'braceexpand>=0.1.2',
    'networkx>=2.5',
    'numpy>=1.19',
    'pandas>=1.1',
    'pysam>=0.16',
    'scipy>=1.5',
    'snakemake>=6.0',
]

DEPLOY_REQS = ['twine', 'm2r', 'wheel']


setup(
    name='mutsift',
    version='{}'.format(VERSION),
    packages=find_packages('src', exclude=['tests']),
    package_dir={'': 'src'},
    package_data={'mutsift': ['schemas/*.json']},
    description='Somatic SNV and indel calling by local assembly, with a statistical filter battery',
    long_description=parse_md_readme(),
    install_requires=INSTALL_REQS,
    extras_require={
        'test': TEST_REQS,
        'dev': ['black', 'flake8'] + TEST_REQS + DEPLOY_REQS,
        'deploy': DEPLOY_REQS,
    },
    tests_require=TEST_REQS,
    setup_requires=['pip>=9.0.0', 'setuptools>=36.0.0'],
    python_requires='>=3.7',
    test_suite='tests',
    entry_points={
        'console_scripts': [
            'mutsift = mutsift.main:main',
        ]
    },
)
