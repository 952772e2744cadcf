"""
TabPilot - Setup Configuration

An LLM agent execution engine that operates a browser page: streamed
chat completions, tool calls against the active tab, user approval for
dangerous actions and cancellation on user interaction.

License: MIT
"""

from setuptools import setup, find_packages
from pathlib import Path

# Read README for long description
readme_file = Path(__file__).parent / "README.md"
long_description = readme_file.read_text(encoding="utf-8") if readme_file.exists() else ""

# Core dependencies
core_deps = [
    # Engine core
    "pydantic>=2.11.9",
    "aiohttp>=3.12.15",
    # Browser automation
    "playwright>=1.55.0",
    "beautifulsoup4>=4.14.2",
    "lxml>=6.0.2",  # Fast HTML parsing for search results
    # UI/Terminal
    "rich>=14.1.0",
    "click>=8.1.0",
]

# Development dependencies
dev_deps = [
    # Testing
    "pytest>=8.4.1",
    "pytest-asyncio>=1.0.0",
    "pytest-mock>=3.14.1",
    "pytest-cov>=6.2.1",
]

setup(
    name="tabpilot",
    version="0.1.0",

    # Package description
    description="An LLM agent engine that operates the active browser page through tool calls",
    long_description=long_description,
    long_description_content_type="text/markdown",

    # Package discovery
    packages=find_packages(where="src"),
    package_dir={"": "src"},

    # Python version requirement
    python_requires=">=3.10",

    # Dependencies
    install_requires=core_deps,

    # Optional dependencies (extras)
    extras_require={
        "test": dev_deps,
        "dev": dev_deps,
    },

    # PyPI classifiers
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3 :: Only",
        "Topic :: Internet :: WWW/HTTP :: Browsers",
        "Topic :: Scientific/Engineering :: Artificial Intelligence",
        "Framework :: AsyncIO",
    ],

    keywords=["ai", "agents", "llm", "browser", "automation", "playwright", "tool-calling"],

    license="MIT",

    include_package_data=True,
    zip_safe=False,

    entry_points={
        "console_scripts": [
            "tabpilot=tabpilot.cli:main",
        ],
    },
)
