from setuptools import setup, find_packages

setup(
    name="blanket-watch",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.9",
    install_requires=[
        "numpy",
        "pandas",
        "requests",
        "openpyxl"
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        'console_scripts': [
            'blanket-watch=blanket_watch.main:main',
        ],
    },
)
