from setuptools import setup, find_packages

setup(
    name="kinkal_reco",
    version="0.1.0",
    description="Kinematic Kalman fit of charged-particle helices with field corrections and drift-wire hits",
    packages=find_packages(include=["kinkal_reco", "kinkal_reco.*"]),
    python_requires=">=3.10",
    install_requires=[
        # Runtime dependencies
        "numpy",
        "numba",
        "pandas",
        "matplotlib",
        "scipy",
        "orjson",
    ],
    extras_require={
        # Developer extras
        "dev": [
            "pytest",
            "black",
            "mypy",
        ],
    },
    entry_points={
        "console_scripts": [
            "kinkal-fit=kinkal_reco.main:main",
        ],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "Operating System :: OS Independent",
    ],
)
