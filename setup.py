#!/usr/bin/env python3
"""Setup script for scanfleet."""

import pathlib
from setuptools import setup, find_packages

here = pathlib.Path(__file__).parent

# Read version from VERSION file
with open(here / "VERSION", 'r', encoding='utf-8') as f:
    version = f.read().strip()

# Read README for long description
with open(here / "README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

# Read requirements
with open(here / "requirements.txt", "r", encoding="utf-8") as fh:
    requirements = [
        line.strip()
        for line in fh
        if line.strip() and not line.startswith("#") and not line.startswith("-")
    ]

setup(
    name="scanfleet",
    version=version,
    author="scanfleet developers",
    description="Distributed nuclei scanning across a transient droplet fleet",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["test", "test.*"]),
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Information Technology",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Security",
        "Topic :: System :: Distributed Computing",
    ],
    python_requires=">=3.10",
    install_requires=requirements,
    extras_require={
        "test": [
            "pytest>=7.0",
            "httpx>=0.24",
        ],
    },
    entry_points={
        "console_scripts": [
            "scanfleet=scanfleet.server:main",
        ],
    },
)
