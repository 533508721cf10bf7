"""Build rtcsignal package."""
import setuptools

with open("README.md") as f:
    long_desc = f.read()

setuptools.setup(
    name="rtcsignal",
    version="0.1.0",
    author="Greg Pauloski",
    author_email="jgpauloski@uchicago.edu",
    description="Embedded WebRTC answering server with buffered data channels",
    long_description=long_desc,
    long_description_content_type="text/markdown",
    packages=setuptools.find_packages(include=["rtcsignal", "rtcsignal.*"]),
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: Apache Software License",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.10",
    install_requires=[
        "aiortc>=1.6.0",
        "click",
        "pydantic>=2",
        "tomli ; python_version<'3.11'",
        "tomli-w",
        "typing-extensions>=4.3.0 ; python_version<'3.11'",
        "websockets>=14.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0",
            "pytest-asyncio>=0.23.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "rtcsignal-server=rtcsignal.run:cli",
        ],
    },
)
