"""Build PeerMatch package."""
import setuptools

with open("README.md") as f:
    long_desc = f.read()

setuptools.setup(
    name="peermatch",
    version="0.1.0",
    description="Peer-to-peer profile matching over WebRTC data channels",
    long_description=long_desc,
    long_description_content_type="text/markdown",
    packages=setuptools.find_packages(exclude=["tests*", "testing*"]),
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: Apache Software License",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.9",
    install_requires=[
        "aiortc>=1.6.0",
        "click",
        "cryptography>=39.0.1",
        "pydantic>=2",
        "tomli ; python_version<'3.11'",
        "tomli-w",
        "typing-extensions ; python_version<'3.11'",
        "websockets>=13",
    ],
    extras_require={
        "dev": [
            "pre-commit",
            "tox",
        ],
        "test": [
            "pytest",
            "pytest-asyncio>=0.23",
            "pytest-timeout",
        ],
    },
    entry_points={
        "console_scripts": [
            "peermatch-peer=peermatch.cli:cli",
            "peermatch-relay=peermatch.relay.run:cli",
        ],
    },
)
