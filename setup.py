# Copyright 2024 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

import os

import setuptools

requirements = [
    "pyyaml>=6.0.1",
    "colorama>=0.4.6",
    "rich>=13.4.2",
    "pydantic>=2.4.2",
    "msgspec>=0.18.6",
]

# this sets __version__
# via: http://stackoverflow.com/a/7071358/87207
# and: http://stackoverflow.com/a/2073599/87207
with open(os.path.join("sigmatch", "version.py"), "r") as f:
    exec(f.read())


# via: https://packaging.python.org/guides/making-a-pypi-friendly-readme/
this_directory = os.path.abspath(os.path.dirname(__file__))
with open(os.path.join(this_directory, "README.md"), "r") as f:
    long_description = f.read()


setuptools.setup(
    name="sigmatch",
    version=__version__,
    description="Evaluate Sigma detection rules against individual log entries.",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=setuptools.find_packages(exclude=["tests", "tests.*"]),
    package_dir={"sigmatch": "sigmatch"},
    entry_points={
        "console_scripts": [
            "sigmatch=sigmatch.main:main",
        ]
    },
    include_package_data=True,
    install_requires=requirements,
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "pytest-sugar>=0.9.7",
            "pytest-instafail>=0.5.0",
            "pytest-cov>=4.1.0",
            "pycodestyle>=2.11.0",
            "black>=23.7.0",
            "isort>=5.12.0",
            "mypy>=1.5.0",
            # type stubs for mypy
            "types-colorama>=0.4.15",
            "types-PyYAML>=6.0.8",
        ],
    },
    zip_safe=False,
    keywords="sigma detection rules log matching siem",
    classifiers=[
        "Development Status :: 5 - Production/Stable",
        "Intended Audience :: Developers",
        "Intended Audience :: Information Technology",
        "License :: OSI Approved :: Apache Software License",
        "Natural Language :: English",
        "Programming Language :: Python :: 3",
        "Topic :: Security",
    ],
    python_requires=">=3.10",
)
