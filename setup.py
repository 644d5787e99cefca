"""Setup configuration for the social moderation pipeline."""

from setuptools import setup, find_packages

setup(
    name="socialmod",
    version="0.0.1",
    description="Content moderation and media ingestion pipeline for social apps",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.11",
    install_requires=[
        "aiosqlite",
        "Pillow",
        "pillow-heif",
        "requests",
        "PyYAML",
        "python-dotenv",
        "prompt_toolkit",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
        ],
    },
    entry_points={
        "console_scripts": [
            "socialmod=socialmod.main:main",
        ],
    },
)
