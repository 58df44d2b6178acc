"""Packaging of stvario, spatiotemporal variogram analysis of simulated station data"""
from setuptools import find_packages, setup

setup(
    name="stvario",
    version="0.1.0",
    description="Empirical spatiotemporal variograms and fitting of space-time variogram model families",
    license="Apache-2.0",
    python_requires=">=3.10",
    packages=find_packages(include=["stvario", "stvario.*"]),
    install_requires=[
        "numpy",
        "scipy",
        "pandas",
        "matplotlib",
        "scikit-gstat>=1.0",
        "geopandas>=1.0",
        "pyyaml",
        "cerberus",
        "argcomplete",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "stvario = stvario.cli:main",
        ],
    },
)
