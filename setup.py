import os
import io
import setuptools

readme_path = "README.md"
long_description = ""
if os.path.exists(readme_path):
    with io.open(readme_path, encoding="utf-8") as f:
        long_description = f.read()

setuptools.setup(
    name="banded_recurrence",
    version="0.1.0",
    author="Sam Blouir",
    author_email="scblouir@gmail.com",
    description="Banded linear recurrence with a hand-written autograd backward",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=setuptools.find_packages(),
    python_requires=">=3.8",
    install_requires=[
        "torch",
        "tqdm",
        "numpy",
        "einops",
        "triton; platform_system == 'Linux'",
    ],
    extras_require={
        "test": ["pytest"],
    },
    classifiers=[
        "Programming Language :: Python :: 3.8",
        "Operating System :: OS Independent",
    ],
)
