from setuptools import setup, find_packages

setup(
    name="zb-migrate",
    version="0.1.0",
    description="Migrate Homebrew formulae to Zerobrew in dependency order.",
    license="MIT",
    packages=find_packages(exclude=["tests", "tests.*"]),
    package_data={"zbmigrate": ["data/risk_table.yaml"]},
    python_requires=">=3.8",
    install_requires=[
        "rich>=13.0.0",
        "PyYAML>=6.0",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    entry_points={
        "console_scripts": [
            "zb-migrate=zbmigrate.modules.cli:main",
        ],
    },
)
