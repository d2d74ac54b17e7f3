#!/usr/bin/env python3
"""LockGuard: Interprocedural Static Deadlock Detection."""

from setuptools import find_packages, setup

# Read the contents of README.md for the long description
with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

# Read requirements from requirements.txt
with open("requirements.txt", "r", encoding="utf-8") as fh:
    requirements = [
        line.strip() for line in fh if line.strip() and not line.startswith("#")
    ]

setup(
    name="lockguard",
    version="0.3.0",
    author="Pradeep Kumar",
    author_email="pradeep@example.com",
    description="Interprocedural static detection of double-lock and conflict-lock deadlocks",
    long_description=long_description,
    long_description_content_type="text/markdown",
    url="https://github.com/MLCyberSecOps/monero_cli_data_race",
    packages=find_packages(exclude=["tests", "tests.*", "examples", "examples.*"]),
    entry_points={
        "console_scripts": [
            "lockguard=lockguard.cli:main",
        ],
    },
    python_requires=">=3.9",
    install_requires=requirements,
    extras_require={
        "test": ["pytest>=7.0"],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Programming Language :: Python :: 3.13",
        "Operating System :: OS Independent",
        "Topic :: Software Development :: Quality Assurance",
        "Topic :: Software Development :: Testing",
    ],
    keywords="static-analysis concurrency deadlock-detection call-graph lock-order",
    project_urls={
        "Bug Reports": "https://github.com/MLCyberSecOps/monero_cli_data_race/issues",
        "Source": "https://github.com/MLCyberSecOps/monero_cli_data_race",
    },
)
