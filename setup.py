from setuptools import setup, find_packages


setup(
    name="tarstream",
    version="0.1",
    packages=find_packages(include=["tarstream", "tarstream.*"]),
    description="Streaming ustar (tar) archive reader and writer with a small command line tool.",
    author="vercingetorx",
    python_requires=">=3.8",
    install_requires=[],
    entry_points={
        "console_scripts": [
            "tarstream=tarstream.cli:main",
        ]
    },
)
