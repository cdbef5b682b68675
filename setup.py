"""
DataWeave Build Configuration

Usage:
    pip install -e .            # Runtime dependencies
    pip install -e ".[test]"    # Plus the test toolchain
"""

from setuptools import setup, find_packages

setup(
    name="dataweave",
    version="0.1.0",
    description="Append-only, content-addressed provenance ledger for AI computations",
    packages=find_packages(include=["dataweave", "dataweave.*"]),
    install_requires=[
        "pydantic>=2.0",
        "pydantic-settings>=2.0",
        "loguru>=0.7",
        "aiosqlite>=0.19",
        "fastapi>=0.100",
        "uvicorn>=0.23",
    ],
    extras_require={
        "test": [
            "pytest>=7.4",
            "pytest-asyncio>=0.21",
            "httpx>=0.24",
        ],
    },
    python_requires=">=3.10",
)
