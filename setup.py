"""Setup configuration for pyMBAT package"""

from setuptools import setup, find_packages

setup(
    name="pymbat",
    version="0.1.0",
    author="pyMBAT Development Team",
    description="Set-based multivariate association test (MBAT) on GWAS summary statistics with VIF collinearity reduction",
    long_description=open("README.md").read() if __import__("os").path.exists("README.md") else "",
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "numpy>=1.19.0",
        "scipy>=1.6.0",
        "pandas>=1.2.0",
        "numba>=0.50.0",
        "joblib>=1.0.0",
    ],
    extras_require={
        "test": [
            "pytest>=6.0",
        ],
    },
    python_requires=">=3.7",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Science/Research",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.7",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Topic :: Scientific/Engineering :: Bio-Informatics",
    ],
)
