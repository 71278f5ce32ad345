"""
Setup file.
"""

import os

from setuptools import find_packages, setup

URL = "https://github.com/spvforge/spvforge"
KEYWORDS = "rust-gpu spirv shader vulkan compiler toolchain cargo rustup cache"
HERE = os.path.dirname(os.path.abspath(__file__))


def get_version() -> str:
    """Read __version__ from the package without importing it."""
    init_path = os.path.join(HERE, "src", "spvforge", "__init__.py")
    with open(init_path, encoding="utf-8") as f:
        for line in f:
            if line.startswith("__version__"):
                return line.split("=", 1)[1].strip().strip('"')
    raise RuntimeError("Unable to find __version__")


if __name__ == "__main__":
    setup(
        name="spvforge",
        version=get_version(),
        description="Compile Rust shader crates to SPIR-V with a cached rust-gpu backend",
        maintainer="spvforge developers",
        keywords=KEYWORDS,
        url=URL,
        python_requires=">=3.11",
        package_dir={"": "src"},
        packages=find_packages("src"),
        install_requires=[
            "requests>=2.31",
            "tqdm>=4.66",
            "psutil>=5.9",
            "watchdog>=4.0",
        ],
        extras_require={
            "test": ["pytest>=7.4"],
        },
        entry_points={
            "console_scripts": [
                "spvforge=spvforge.cli:main",
            ],
        },
        include_package_data=True)
