"""Setup configuration for memory-checkpoint package."""

from setuptools import setup, find_packages

setup(
    name="memory-checkpoint",
    version="0.1.0",
    description="Checkpoint, rollback and auto-recovery engine for agent memory",
    packages=find_packages(where="src", exclude=["tests", "tests.*"]),
    package_dir={"": "src"},
    python_requires=">=3.9",
    install_requires=[
        "pydantic>=2.0.0",
        "python-dotenv>=1.0.0",
        "PyYAML>=6.0",
        "click>=8.1.0",
        "rich>=13.0.0",
        "psutil>=5.9.0",
        "aiofiles>=23.1.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.1.0",
            "pytest-mock>=3.11.0",
            "ruff>=0.1.0",
            "mypy>=1.5.0",
            "black>=23.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "memory-checkpoint=memory_checkpoint.cli.app:main",
        ],
    },
)
