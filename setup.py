# Copyright (C) 2020-2022 Markus Wallerberger, Hiroshi Shinaoka, and others
# SPDX-License-Identifier: MIT
import io, os.path, re
from setuptools import setup, find_packages

HERE = os.path.abspath(os.path.dirname(__file__))


def read_text(*path):
    """Contents of a file in the source tree"""
    with io.open(os.path.join(HERE, *path), 'r', encoding='utf-8') as f:
        return f.read()


def package_version():
    """Parse ``__version__`` from the package without importing it"""
    init_py = read_text('src', 'irsparse', '__init__.py')
    match = re.search(r"(?m)^__version__\s*=\s*['\"]([^'\"]+)['\"]", init_py)
    if match is None:
        raise RuntimeError("cannot find __version__ in irsparse/__init__.py")
    return match.group(1)


setup(
    name='irsparse',
    version=package_version(),

    description=
        'sparse intermediate representation (IR) basis for many-body '
        'propagators',
    long_description=read_text('README.rst'),
    long_description_content_type='text/x-rst',
    keywords='irbasis matsubara sparse-sampling analytic-continuation',
    classifiers=[
        'Development Status :: 4 - Beta',
        'Intended Audience :: Science/Research',
        'Topic :: Scientific/Engineering :: Physics',
        'License :: OSI Approved :: MIT License',
        'Programming Language :: Python :: 3',
        ],

    author='Markus Wallerberger, Hiroshi Shinaoka, and others',

    python_requires='>=3.7',
    install_requires=['numpy', 'scipy>=1.7'],
    extras_require={
        'test': ['pytest'],
        'doc': ['sphinx>=2.1', 'sphinx_rtd_theme'],
        },

    package_dir={'': 'src'},
    packages=find_packages(where='src'),
    )
