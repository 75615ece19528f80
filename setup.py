"""Setup project."""

from setuptools import setup, find_packages

setup(
    name='blibmsp',
    packages=find_packages(exclude=["tests", "tests.*"]),
    version='0.1.0',
    description='Convert BiblioSpec spectral libraries to and from NIST MSP, with FASTA protein mapping',
    entry_points={
        'console_scripts': [
            "blibmsp = blibmsp.tools.cli:main"
        ],
    },
    classifiers=[
        "Intended Audience :: Science/Research",
        "Programming Language :: Python :: 3 :: Only",
        "Topic :: Scientific/Engineering :: Bio-Informatics",
        "Development Status :: 3 - Alpha"
    ],
    python_requires=">=3.8",
    install_requires=[
        "numpy",
        "sqlalchemy >= 1.4",
        "click",
        "colorama",
        "pyteomics >= 4.5.3",
        "lxml",
        "pyahocorasick",
    ],
    extras_require={
        "test": [
            "pytest",
        ]
    }
)
