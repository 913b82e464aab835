import re
import sys
from pathlib import Path

from setuptools import find_packages, setup

project_dir = Path(__file__).parent


def get_version():
    text = (project_dir / "src" / "ecsprovisioner" / "version.py").read_text()
    match = re.compile(r"__version__\s*=\s*\"?([^\n\"]+)\"?.*").match(text)
    if match:
        if match.group(1) != "None":
            return match.group(1)
        else:
            return None
    else:
        sys.exit("Can't parse version.py")


def get_long_description():
    return open(project_dir / "README.md").read()


BASE_DEPS = [
    "pydantic>=1.10.10",
    "cachetools",
    "python-json-logger>=3.1.0",
]

ALIBABACLOUD_DEPS = [
    "alibabacloud-ecs20140526>=4.0.0",
    "alibabacloud-tea-openapi>=0.3.0",
    "alibabacloud-tea-util>=0.3.0",
    "alibabacloud-tea>=0.3.0",
]

TEST_DEPS = [
    "pytest>=7.0",
    "freezegun>=1.2.0",
]

setup(
    name="ecsprovisioner",
    version=get_version(),
    package_dir={"": "src"},
    packages=find_packages("src"),
    include_package_data=True,
    description="Provisioning engine that launches and manages Alibaba Cloud ECS instances for a Kubernetes node autoscaler.",
    long_description=get_long_description(),
    long_description_content_type="text/markdown",
    python_requires=">=3.9",
    install_requires=BASE_DEPS + ALIBABACLOUD_DEPS,
    extras_require={
        "test": TEST_DEPS,
    },
    classifiers=[
        "Development Status :: 2 - Pre-Alpha",
        "Topic :: System :: Clustering",
        "Programming Language :: Python :: 3",
    ],
)
