"""Build windowrtc package."""
import setuptools

with open("README.md") as f:
    long_desc = f.read()

setuptools.setup(
    name="windowrtc",
    version="0.1.0",
    author="windowrtc developers",
    description="Name-based WebRTC signaling relay and peer sessions",
    long_description=long_desc,
    long_description_content_type="text/markdown",
    packages=setuptools.find_packages(include=["windowrtc", "windowrtc.*"]),
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: Apache Software License",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.9",
    install_requires=[
        "aiortc>=1.6.0",
        "click",
        "cryptography",
        "pydantic>=2",
        "pyee>=11",
        "tomli ; python_version<'3.11'",
        "typing-extensions>=4.3.0 ; python_version<'3.11'",
        "websockets>=13.0",
    ],
    extras_require={
        "dev": [
            "pytest",
            "pytest-asyncio>=0.23.0",
            "pytest-cov",
            "pytest-timeout",
        ],
    },
    entry_points={
        "console_scripts": [
            "windowrtc-coordinator = windowrtc.run:cli",
        ],
    },
)
