from setuptools import find_packages, setup

setup(
    name="django-skew-protection",
    version="1.0",
    description="Django middleware that pins browser sessions to one deployment.",
    license="BSD-3-Clause",
    packages=find_packages(exclude=["tests*"]),
    python_requires=">=3.11",
    install_requires=["django>=4.2"],
)
