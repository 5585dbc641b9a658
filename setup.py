from setuptools import setup, find_packages
from pathlib import Path


pytorch_version_l = '2.0.0'
pytorch_version_u = '2.9.0'     # excluded

msg_install_pytorch = (
    f'It is recommended to manually install PyTorch '
    f'(>={pytorch_version_l},<{pytorch_version_u}) suitable '
    f'for your system ahead of time: https://pytorch.org/get-started.\n'
)

try:
    import torch
    if torch.__version__ < pytorch_version_l:
        print(f'PyTorch version {torch.__version__} is too low. '
              + msg_install_pytorch)
    if torch.__version__ >= pytorch_version_u:
        print(f'PyTorch version {torch.__version__} is too high. '
              + msg_install_pytorch)
except ModuleNotFoundError:
    print(f'PyTorch is not installed. {msg_install_pytorch}')


version = None
init_file = Path(__file__).parent / "relu_mip" / "__init__.py"
for line in init_file.read_text().splitlines():
    if line.strip().startswith("__version__"):
        version = eval(line.split("=")[-1].strip())
        break

if version is None:
    raise RuntimeError("Cannot find __version__ in relu_mip/__init__.py")


this_directory = Path(__file__).parent
long_description = (this_directory / "README.md").read_text(encoding="utf-8")

print(f"Installing relu-mip {version}")

setup(
    name="relu-mip",
    version=version,
    description=(
        "MIP-based bound tightening and lossless pruning for ReLU networks "
        "with sequential, multi-threaded and multi-process schedulers"
    ),
    long_description=long_description,
    long_description_content_type="text/markdown",
    author="relu-mip Team",
    packages=find_packages(exclude=["tests", "tests.*"]),
    include_package_data=True,
    install_requires=[
        f"torch>={pytorch_version_l},<{pytorch_version_u}",
        "numpy>=1.20",
        "termcolor>=2.3.0",
        "gurobipy>=10",
        "pyyaml>=6.0",
    ],
    extras_require={
        "test": [
            "pytest>=8.1.1",
            "pytest-mock>=3.14",
        ],
    },
    platforms=["any"],
    license="BSD",
)
