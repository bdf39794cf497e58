from setuptools import setup, find_packages

setup(
    name="table1-blueprint",
    version="0.1.0",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    install_requires=[
        "numpy>=1.24.0",
        "pandas>=2.0.0",
        "scipy>=1.10.0",
        "PyYAML>=6.0",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    description="Lazy Table 1 blueprints: planned shape, cached statistics, console/HTML/LaTeX rendering",
    python_requires=">=3.10",
)
