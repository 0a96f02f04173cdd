"""Setup script for the Splat Temporal project"""

from setuptools import setup

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="splat-temporal",
    version="0.1.0",
    description="Per-attribute video sequences and manifests from Gaussian splat frames",
    long_description=long_description,
    long_description_content_type="text/markdown",
    package_dir={"": "src"},
    py_modules=[
        "catalog",
        "config",
        "encoder",
        "main",
        "manifest",
        "models",
        "sequencing",
    ],
    classifiers=[
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "License :: OSI Approved :: Apache Software License",
        "Operating System :: OS Independent",
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Multimedia :: Video",
        "Topic :: Multimedia :: Graphics :: 3D Rendering",
    ],
    python_requires=">=3.9",
    install_requires=[
        "numpy>=1.21.0",
        "opencv-python>=4.5.0",
        "tqdm>=4.62.0",
        "pydantic>=2.0",
        "pyyaml>=5.4.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "splat-temporal=main:main",
        ],
    },
)
