"""
Setup script for Bulk Data Exchange Pipeline

Asynchronous spreadsheet import and export for business modules, with a
persistent job queue, stuck-job recovery and scheduled export delivery.
"""

from setuptools import setup, find_packages
import pathlib

here = pathlib.Path(__file__).parent.resolve()

# Get the long description from the README file
try:
    long_description = (here / "README.md").read_text(encoding="utf-8")
except FileNotFoundError:
    long_description = """
    Bulk Data Exchange Pipeline

    Asynchronous spreadsheet import and export for business modules, with a
    persistent job queue, bounded worker pools, stuck-job recovery and
    scheduled export delivery by email.
    """

setup(
    name="bulk-data-exchange",
    version="1.0.0",
    description="Asynchronous bulk import/export pipeline for business modules",
    long_description=long_description,
    long_description_content_type="text/markdown",
    author="Bulk Data Exchange Team",
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Software Development :: Libraries :: Python Modules",
        "Topic :: Office/Business",
    ],
    keywords="bulk import, export, csv, job queue, scheduled export, async",
    packages=find_packages(exclude=["tests", "tests.*", "examples"]),
    python_requires=">=3.9",
    install_requires=[
        # Core dependencies
        "asyncpg>=0.27.0",
        "click>=8.0.0",

        # Async file access
        "aiofiles>=23.1.0",

        # Configuration and serialization
        "pyyaml>=6.0",
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",

        # Scheduling
        "croniter>=1.4.0",
        "python-dateutil>=2.8.2",

        # Monitoring
        "prometheus-client>=0.17.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "black>=22.0.0",
            "isort>=5.10.0",
            "mypy>=1.0.0",
            "coverage>=6.0.0",
            "flake8>=5.0.0",
        ],
        "test": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "bulk-data-exchange=bulk_data_exchange.cli.main:main",
            "bdx=bulk_data_exchange.cli.main:main",
        ],
    },
)
