"""Setup script for EMI Ledger."""

from setuptools import setup, find_packages

setup(
    name="emi_ledger",
    version="0.1.0",
    description="Loan accounts and concurrency-safe EMI payment processing",
    author="ML Roadmap Bootcamp",
    python_requires=">=3.10",
    packages=find_packages(include=["emi_ledger", "emi_ledger.*"]),
    package_data={"emi_ledger.database": ["migrations/*.py", "migrations/*.mako", "migrations/versions/*.py"]},
    install_requires=[
        line.strip()
        for line in open("requirements.txt")
        if line.strip() and not line.startswith("#") and not line.startswith("git+")
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.23.0",
            "pytest-mock>=3.12.0",
            "httpx>=0.27.0",
        ],
        "dev": [
            "black>=23.0.0",
            "isort>=5.12.0",
            "flake8>=6.0.0",
            "mypy>=1.4.0",
            "pytest-cov>=4.1.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "emi-ledger-api=emi_ledger.api.main:run",
            "emi-ledger-seed=emi_ledger.workers.seed:main",
        ]
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Financial and Insurance Industry",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
)
