#!/usr/bin/env python3
"""
Setup script for Quote Studio.

Packages the quote_studio library and the ``main`` entry point for
installation via pip.
"""

from setuptools import setup, find_packages
from pathlib import Path

# Read the project directory
here = Path(__file__).parent.resolve()

# Read the README file
long_description = (here / "README.md").read_text(encoding="utf-8") if (here / "README.md").exists() else ""


def get_version():
    """Read ``__version__`` from the package without importing it."""
    init_file = here / "quote_studio" / "__init__.py"
    for line in init_file.read_text(encoding="utf-8").splitlines():
        if line.startswith("__version__"):
            return line.split("=", 1)[1].strip().strip('"\'')
    return "0.0.0"


def get_requirements():
    """Read requirements from requirements.txt."""
    requirements_file = here / "requirements.txt"
    if requirements_file.exists():
        with open(requirements_file, "r", encoding="utf-8") as f:
            return [
                line.strip()
                for line in f
                if line.strip() and not line.startswith("#")
            ]
    return []


setup(
    # Basic package information
    name="quote-studio",
    version=get_version(),
    description="Golf-cart quote numbering, live patch editing, export and similar-quote search",
    long_description=long_description,
    long_description_content_type="text/markdown",

    # Package discovery
    packages=find_packages(exclude=["tests", "tests.*"]),
    py_modules=["main"],

    # Dependencies
    python_requires=">=3.11",
    install_requires=get_requirements(),

    # Optional dependencies
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.0.0",
            "httpx>=0.25.0",
            "black>=23.0.0",
            "mypy>=1.0.0",
            "ruff>=0.1.0",
        ],
    },

    # Entry points
    entry_points={
        "console_scripts": [
            "quote-studio=main:main",
        ],
    },

    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: End Users/Desktop",
        "Topic :: Office/Business :: Financial :: Accounting",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Environment :: Web Environment",
    ],
    keywords="quotes estimates pricing golf-cart fastapi",
    license="MIT",
    include_package_data=True,
    zip_safe=False,
)
