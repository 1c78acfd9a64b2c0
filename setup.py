from setuptools import setup, find_namespace_packages

setup(
    name="otd",
    version="0.1.0",
    packages=find_namespace_packages(where="src", include=["otd", "otd.*"]),
    package_dir={"": "src"},
    package_data={"otd": ["MANIFESTS/*.yaml"]},
    install_requires=[
        "pydantic>=2.0",
        "pyyaml>=6.0",
        "click>=8.0",
        "psutil>=5.9",
        "tenacity>=8.0",
        "python-dotenv>=1.0",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
        "dev": ["black>=23.0"],
    },
    entry_points={
        "console_scripts": [
            "otd=otd.CLI.main:main",
        ],
    },
)
