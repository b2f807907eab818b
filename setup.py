import os
import re
import ast

from setuptools import setup, find_packages

with open(os.path.join('flexquant', '__init__.py')) as f:
    match = re.search(r'__version__\s+=\s+(.*)', f.read())
version = str(ast.literal_eval(match.group(1)))

setup(
    name                    = 'flexquant',
    version                 = version,
    description             = 'Kallisto-based paired-end RNA-Seq quantification pipeline with CDS cleaning and QC reporting',
    license                 = "BSD 3-clause License",
    keywords                = 'RNA-Seq kallisto pseudoalignment quantification',
    packages                = find_packages(exclude=['tests', 'tests.*']),
    install_requires        = ['numpy','pandas'],
    extras_require          = {'test': ['pytest']},
    scripts                 = ['flexquant/flexquant',],
    include_package_data    = True
)
