from setuptools import setup, find_packages

setup(
    name="temporal_wrappers",
    version="0.1.0",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    install_requires=[
        "keras>=3.0",
        "numpy",
        "pytest",
        "tensorflow",
    ],
    extras_require={
        'dev': ['pylint']
    }
)
