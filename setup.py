"""
Setup script as fallback for package installation
"""
from setuptools import setup, find_packages

setup(
    name="grading_billing",
    version="0.1.0",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    package_data={"grading_billing": ["config/*.yaml"]},
    include_package_data=True,
    python_requires=">=3.10,<3.14",
    install_requires=[
        "fastapi>=0.100",
        "uvicorn[standard]",
        "sqlalchemy>=2.0",
        "pydantic>=2.0",
        "python-jose[cryptography]",
        "stripe>=8,<12",
        "requests",
        "pyyaml",
        "python-dotenv",
        "apscheduler>=3.10,<4",
        "python-dateutil",
        "psycopg2-binary",
        "alembic",
    ],
    extras_require={
        "test": [
            "pytest",
            "httpx",
            "hypothesis",
        ],
    },
)
