import pathlib

from setuptools import setup

VERSION = "0.1.0"

HERE = pathlib.Path(__file__).parent
README = (HERE / "README.md").read_text()

setup(
    name="mysa_sdk",
    version=VERSION,
    description="Library for the Mysa smart thermostat cloud",
    long_description=README,
    long_description_content_type="text/markdown",
    keywords="mysa thermostat mqtt realtime",
    package_data={"mysa_sdk": ["py.typed"]},
    packages=["mysa_sdk"],
    include_package_data=True,
    python_requires=">=3.11",
    install_requires=[
        "aiohttp>=3.7.3",
        "aiomqtt>=2.0.0",
        "botocore>=1.31.0",
        "mashumaro>=3.10",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
            "pytest-aiohttp>=1.0.0",
            "pytest-asyncio>=0.21.0",
        ],
    },
    zip_safe=False,
)
