#!/usr/bin/env python3
"""
Workguard Setup Configuration
Error handling and component health management for editor-hosted workflows
"""

from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()


def read_requirements(path):
    with open(path, "r", encoding="utf-8") as fh:
        return [line.strip() for line in fh if line.strip() and not line.startswith("#")]


requirements = read_requirements("config/requirements.txt")
test_requirements = read_requirements("config/requirements-test.txt")

setup(
    name="workguard",
    version="1.0.0",
    description="Categorized errors, debounced dispatch, recovery and component health boundaries",
    long_description=long_description,
    long_description_content_type="text/markdown",
    package_dir={"": "src"},
    packages=find_packages("src"),
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
    ],
    python_requires=">=3.9",
    install_requires=requirements,
    extras_require={"test": test_requirements},
    entry_points={
        "console_scripts": [
            "workguard=workguard.cli:main",
        ],
    },
    include_package_data=True,
    keywords="error-handling recovery circuit-breaker degraded-mode health",
)
