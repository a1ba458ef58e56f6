# Package installation script

from setuptools import setup, find_namespace_packages

setup(
    name="air_ingest",
    version="0.1.0",
    packages=find_namespace_packages(where="src", include=["air_ingest*"]),
    package_dir={"": "src"},
    python_requires=">=3.10",
    entry_points={
        "console_scripts": [
            "air_ingest=air_ingest.__main__:main",
        ],
    },
    install_requires=[
        "fastapi",
        "hypercorn",
        "pyyaml",
        "aiomqtt>=2.0",
        "aiohttp",
        "aiosqlite",
        "pydantic>=2",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
        ],
    },
)
