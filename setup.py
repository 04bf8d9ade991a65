from setuptools import setup, find_packages

setup(
    name="lartpc_reco",
    version="0.1.0",
    description="Particle hierarchy matching and transverse cluster association for LArTPC reconstruction",
    author="Your Name",
    author_email="your.email@example.com",
    packages=find_packages(exclude=("tests", "tests.*")),
    python_requires=">=3.9",
    install_requires=[
        # Runtime dependencies
        "numpy",
        "numba",
        "pandas",
        "scipy",
        "networkx",
        "orjson",
    ],
    extras_require={
        # Developer extras
        "dev": [
            "pytest",
            "black",
            "mypy",
        ],
    },
    entry_points={
        "console_scripts": [
            # CLI entry point for running main.py
            "lartpc-reco=lartpc_reco.main:main",
        ],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "Operating System :: OS Independent",
    ],
)
