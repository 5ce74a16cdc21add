from setuptools import setup, find_packages

setup(
    name="raftaudit",
    version="0.1.0",
    description="Offline consistency auditor for raft-replicated metadata store exports",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "msgpack",
        "aiohttp",
    ],
    entry_points={
        "console_scripts": [
            "raftaudit=raftaudit.cli:main",
        ],
    },
    python_requires=">=3.8",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
)
