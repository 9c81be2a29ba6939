"""Setup script for geotrack package."""

from setuptools import setup, find_packages

setup(
    name="geotrack",
    version="0.1.0",
    description="Smoothed position tracking and pan/zoom map projection",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.8",
    install_requires=[
        "pypubsub>=4.0.3",
        "python-dotenv>=1.0.0",
    ],
    extras_require={
        "meshtastic": [
            "meshtastic>=2.2.0",
        ],
        "test": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "geotrack=geotrack.main:main",
        ],
    },
)
