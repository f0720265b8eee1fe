from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

with open("requirements.txt", "r", encoding="utf-8") as fh:
    requirements = [line.strip() for line in fh if line.strip() and not line.startswith("#")]

setup(
    name="deprelay",
    version="1.0.0",
    author="Your Name",
    author_email="your.email@example.com",
    description="Relays package releases across accounts and turns them into dependency update pull requests",
    long_description=long_description,
    long_description_content_type="text/markdown",
    url="https://github.com/yourusername/deprelay",
    packages=find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
    python_requires=">=3.11",
    install_requires=requirements,
    extras_require={
        "test": [
            "pytest>=7.0",
            "httpx>=0.24",
        ],
    },
    entry_points={
        "console_scripts": [
            "deprelay=deprelay.cli:cli",
        ],
    },
    include_package_data=True,
    package_data={
        "deprelay": ["*.yml", "*.yaml"],
    },
)
