from setuptools import setup, find_packages

setup(
    name="FastLNLP",
    version="0.1.0",
    description="Simplex projection and S-map forecasting of time series using PyTorch.",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    packages=find_packages(where='src'),
    package_dir={'': 'src'},
    install_requires=[
        "torch",
        "numpy",
        "scipy",
        "matplotlib",
    ],
    extras_require={
        "test": ["pytest"],
    },
    python_requires=">=3.8",
)
