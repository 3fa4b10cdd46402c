#!/usr/bin/env python3
"""
Setup script for the blue-green manager.
Installs the manager, its HTTP API and the bluegreen-manager CLI.
"""

from setuptools import setup, find_packages

setup(
    name="bluegreen-manager",
    version="1.0.0",
    description="Health-gated blue-green traffic switching between two deployment slots",
    python_requires=">=3.10",
    packages=find_packages(include=["bluegreen_manager", "bluegreen_manager.*"]),
    install_requires=[
        "pydantic>=2.0",
        "PyYAML>=6.0",
        "httpx>=0.24",
        "fastapi>=0.100",
        "uvicorn>=0.22",
        "aiofiles>=23.1",
        "tabulate>=0.9",
        "requests>=2.31",
    ],
    extras_require={
        "test": [
            "pytest>=7.4",
            "pytest-asyncio>=0.21",
            "httpx>=0.24",
        ],
    },
    entry_points={
        "console_scripts": [
            "bluegreen-manager=bluegreen_manager.cli:main",
        ],
    },
)
