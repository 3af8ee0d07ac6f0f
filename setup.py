"""Setup configuration for build_stats"""

from setuptools import setup, find_packages

setup(
    name="build-stats",
    version="0.1.0",
    description=(
        "CLI tool that downloads CI build history (Bitbucket Pipelines, Travis CI) "
        "and calculates build time and success statistics over time."
    ),
    author="build-stats Contributors",
    author_email="",
    python_requires=">=3.10",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    install_requires=[
        "requests>=2.28.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0",
            "black>=22.0",
            "flake8>=4.0",
            "mypy>=0.950",
        ],
    },
    entry_points={
        "console_scripts": [
            "build-stats=build_stats.main:main",
        ],
    },
)
