# Copyright (C) 2012 Anaconda, Inc
# SPDX-License-Identifier: BSD-3-Clause

import os
import sys

from setuptools import find_packages, setup

if not sys.version_info[:2] >= (3, 9):
    sys.exit(
        f"microconda is only meant for Python 3.9 and up. "
        f"current version: {sys.version_info.major}.{sys.version_info.minor}"
    )


# When executing setup.py, we need to be able to import ourselves, this
# means that we need to add the src directory to the sys.path.
src_dir = here = os.path.abspath(os.path.dirname(__file__))
sys.path.insert(0, src_dir)
import microconda  # noqa: E402

long_description = """
microconda is a small binary package manager core for conda packages. It
fetches and caches channel repodata, resolves requested specs with a SAT
solver, downloads and extracts packages into a shared package cache, and
links them into target environments described by a conda-meta directory.
"""

install_requires = [
    "boltons >=23.0.0",
    "conda-package-handling >=2.2.0",
    "pycosat >=0.6.3",
    "requests >=2.28.0,<3",
    "ruamel.yaml >=0.11.14,<0.19",
    "tqdm >=4",
]

extras_require = {
    "test": [
        "pytest >=7",
        "pytest-mock",
        "responses",
    ],
}


setup(
    name=microconda.__name__,
    version=microconda.__version__,
    author=microconda.__author__,
    license=microconda.__license__,
    description=microconda.__summary__,
    long_description=long_description,
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
    packages=find_packages(exclude=("tests", "tests.*", "build", ".tox")),
    entry_points={
        "console_scripts": [
            "microconda=microconda.cli.main:main",
        ],
    },
    install_requires=install_requires,
    extras_require=extras_require,
    python_requires=">=3.9",
    zip_safe=False,
)
