from setuptools import setup, find_packages

setup(
    name="sqlcoverlib",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "pydantic>=2",
        "pyyaml",
        "lxml",
        "sqlalchemy>=2",
    ],
    extras_require={
        "mssql": ["pyodbc"],
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "sqlcover=sqlcoverlib.cli:cli_main",
        ],
    },
    description="Statement-level code coverage for SQL Server stored procedures, functions and triggers",
    classifiers=[
        "Programming Language :: Python :: 3",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.10",
)
