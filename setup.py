"""
Setup configuration for analysis-executor package.
"""

from setuptools import setup, find_packages
from pathlib import Path

# Read the README file
this_directory = Path(__file__).parent
long_description = (this_directory / "README.md").read_text() if (this_directory / "README.md").exists() else ""

setup(
    name="analysis-executor",
    version="0.1.0",
    description="Run a static analyzer one process at a time with queued, cancellable runs",
    long_description=long_description,
    long_description_content_type="text/markdown",

    # Package discovery
    packages=find_packages(include=["executor", "executor.*"]),

    # Dependencies
    install_requires=[
        "APScheduler>=3.10,<4",
        "python-dotenv>=1.0.0",
    ],

    # Optional dependencies
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.23.0",
            "black>=23.0.0",
            "flake8>=6.0.0",
        ],
    },

    # Python version requirement
    python_requires=">=3.10",

    # CLI entry points
    entry_points={
        "console_scripts": [
            "analysis-executor=executor.cli:main",
        ],
    },

    # Classification
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Software Development :: Quality Assurance",
        "Topic :: Software Development :: Libraries :: Python Modules",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],

    # Keywords
    keywords="static analysis codechecker process queue scheduler",

    # Include package data
    include_package_data=True,
)
