from setuptools import find_packages, setup

setup(
    name="shapegraph",
    version="0.1.0-alpha",
    description="Symbolic shape tracking and append-only lazy tensor graphs",
    packages=find_packages(include=["shapegraph", "shapegraph.*"]),
    python_requires=">=3.10",
    install_requires=["numpy", "networkx", "sympy", "tabulate"],
    extras_require={"dev": ["pytest"]},
)
