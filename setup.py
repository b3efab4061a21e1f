"""Setup script for the Governed AI SDK."""

from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="governed-ai-sdk",
    version="1.0.0",
    description="Redacted, policy-gated and audited LLM completions for housing workflows",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(include=["governed_ai", "governed_ai.*"]),
    package_data={"governed_ai": ["sample_jurisdictions/*.yaml"]},
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Topic :: Security",
        "Topic :: Software Development :: Libraries :: Python Modules",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
    python_requires=">=3.9",
    install_requires=[
        "pydantic>=2.0.0",
        "python-dotenv>=1.0.0",
        "regex>=2023.0.0",
        "PyYAML>=6.0",
        "httpx>=0.25.0",
        "orjson>=3.9.0",
        "redis>=5.0.0",
        "cryptography>=41.0.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
            "pytest-asyncio>=0.21.0",
        ],
    },
)
