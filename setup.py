from setuptools import setup, find_packages

setup(
    name="kemono-dl",
    version="0.1",
    description="Download posts, attachments and metadata of a kemono creator profile",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.8",
    install_requires=["requests>=2.0"],
    extras_require={"test": ["pytest>=7"]},
    entry_points={
        "console_scripts": [
            "kemono-dl=kemono_dl.extractor:main",
        ]
    },
)
