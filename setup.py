"""
nanotimer - High-resolution timers backed by an external timing engine

setTimeout/setInterval for Python, with the waiting delegated to a separate
timing engine process over a line protocol.
"""

from setuptools import setup, find_packages

with open("README.md") as f:
    long_description = f.read()

setup(
    name="nanotimer",
    version="1.0.0",
    description="High-resolution timeouts and intervals via an external timing engine",
    long_description=long_description,
    long_description_content_type="text/markdown",
    author="nanotimer Team",
    python_requires=">=3.8",
    packages=find_packages(exclude=["tests", "examples", "tests.*", "*.tests", "*.examples"]),
    install_requires=[
        "pyyaml>=5.4",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "nanotimer=nanotimer.cli.main:main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Topic :: Software Development :: Libraries",
    ],
)
