from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="layerwise",
    version="0.1.0",
    author="DRx Mukesh Choudhary",
    author_email="drxmukeshchoudhary@gmail.com",
    description="Forward/backward tensor layers and indexed data sources for layered neural networks",
    long_description=long_description,
    long_description_content_type="text/markdown",

    packages=find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Intended Audience :: Science/Research",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Topic :: Scientific/Engineering :: Artificial Intelligence",
        "Topic :: Software Development :: Libraries :: Python Modules",
    ],
    python_requires=">=3.8",
    install_requires=[
        "numpy>=1.21.0",
    ],
    extras_require={
        "test": [
            "pytest>=6.0",
            "scipy>=1.7.0",
        ],
        "dev": [
            "pytest>=6.0",
            "scipy>=1.7.0",
            "black>=21.0",
            "flake8>=3.9",
            "mypy>=0.910",
        ],
    },
)
