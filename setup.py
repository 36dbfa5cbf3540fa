"""Setup script for automation-bridge package."""

from setuptools import setup, find_packages
from pathlib import Path

# Read README for long description
readme_path = Path(__file__).parent / "README.md"
long_description = readme_path.read_text() if readme_path.exists() else ""

version: dict = {}
exec((Path(__file__).parent / "automation_bridge" / "_version.py").read_text(), version)

setup(
    name="automation-bridge",
    version=version["__version__"],
    author="automation-bridge Team",
    description="Dual-surface browser controller for scripted web automation",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(include=["automation_bridge", "automation_bridge.*"]),
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Software Development :: Libraries",
        "Topic :: Internet :: WWW/HTTP :: Browsers",
    ],
    python_requires=">=3.10",
    install_requires=[
        "mcp>=1.10.0,<2.0",
        "websockets>=11.0,<13.0",
        "playwright>=1.40.0",
        "aiofiles>=23.0.0",
        "click>=8.0.0",
        "rich>=13.0.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.0.0",
            "black>=23.0.0",
            "mypy>=1.0.0",
            "ruff>=0.1.0",
        ]
    },
    entry_points={
        "console_scripts": [
            "automation-bridge=automation_bridge.cli.main:main",
        ],
    },
    include_package_data=True,
    package_data={
        "automation_bridge": ["assets/*.js"],
    },
    zip_safe=False,
)
