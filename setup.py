# Copyright 2019 Yelp and Contributors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
# http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
from setuptools import setup

import mrcounter

setuptools_kwargs = {
    'extras_require': {
        'test': [
            'pytest',
        ],
    },
    'install_requires': [
        'PyYAML>=3.10',
        'ujson',
    ],
    'provides': ['mrcounter'],
    'test_suite': 'tests',
    'zip_safe': False,
}

with open('README.rst') as f:
    long_description = f.read()

setup(
    classifiers=[
        'Development Status :: 4 - Beta',
        'Intended Audience :: Developers',
        'License :: OSI Approved :: Apache Software License',
        'Natural Language :: English',
        'Operating System :: OS Independent',
        'Programming Language :: Python',
        'Programming Language :: Python :: 3',
        'Topic :: System :: Distributed Computing',
    ],
    description='Counts and distinct counts by group in one MapReduce pass',
    entry_points=dict(
        console_scripts=[
            'mrcounter-page-visits=mrcounter.examples.mr_page_visits:main',
        ]
    ),
    license='Apache',
    long_description=long_description,
    name='mrcounter',
    packages=[
        'mrcounter',
        'mrcounter.examples',
    ],
    python_requires='>=3.6',
    version=mrcounter.__version__,
    **setuptools_kwargs
)
