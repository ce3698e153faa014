from setuptools import setup, find_namespace_packages

setup(
    name="lithia",
    version="0.1.0",
    description="Lithia - interactive terminal SQL console",
    packages=find_namespace_packages(include=["core", "core.*", "ui", "ui.*", "utils", "utils.*"]),
    py_modules=["main", "config"],
    python_requires=">=3.10",
    install_requires=[
        "rich>=13.7.0",
        "mysql-connector-python>=8.3.0",
        "psycopg2-binary>=2.9.9",
        "python-dotenv>=1.0.0",
        "pydantic>=2.5.0",
        "pydantic-settings>=2.1.0",
        "loguru>=0.7.2",
        "prompt_toolkit>=3.0.43",
        "click>=8.1.7",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "lithia=main:cli",
        ],
    },
)
