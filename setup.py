"""
EDMS setup.py — Package configuration and CLI entry point.
"""

from setuptools import find_packages, setup

setup(
    name="edms",
    version="1.0.0",
    description="EDMS — Role-based enterprise document management core",
    packages=find_packages(include=["edms", "edms.*"]),
    python_requires=">=3.11",
    entry_points={
        "console_scripts": [
            "edms=edms.cli:main",
        ],
    },
    install_requires=[
        "sqlalchemy>=2.0",
        "psycopg2-binary>=2.9",
        "pydantic>=2.5",
        "bcrypt>=4.1",
        "pyyaml>=6.0",
        "httpx>=0.27",
        "fastapi>=0.110",
        "uvicorn>=0.29",
        "python-multipart>=0.0.9",
        "PyJWT>=2.8",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "httpx>=0.27",
        ],
    },
)
