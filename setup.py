# -*- coding: utf-8 -*-
"""extsecrets-populate populates secret stores from ExternalSecret definitions.

Values are copied from bootstrap secrets, generated, or rendered from templates over other
secrets, then written to HashiCorp Vault, Google Cloud Secret Manager, Azure Key Vault or
Kubernetes Secrets. Repeated runs converge.

"""

import setuptools
import re
from io import open

VERSIONFILE="extsecrets_populate/_version.py"
verstrline = open(VERSIONFILE, "rt").read()
VSRE = r"^__version__ = ['\"]([^'\"]*)['\"]"
mo = re.search(VSRE, verstrline, re.M)
if mo:
    verstr = mo.group(1)
else:
    raise RuntimeError("Unable to find version string in %s." % (VERSIONFILE,))

with open("README.md", "r", encoding='utf-8') as fh:
    long_description = fh.read()

setuptools.setup(
    name='extsecrets-populate',
    version=verstr,
    author="Mike Moore",
    author_email="z_z_zebra@yahoo.com",
    description="Populate Vault, Google Secret Manager, Azure Key Vault or Kubernetes secrets from ExternalSecret definitions",
    long_description_content_type="text/markdown",
    long_description=long_description,
    url="https://github.com/Mikemoore63/extsecrets-populate",
    packages=setuptools.find_packages(),
    tests_require=['pytest'],
    extras_require={
        "tests": ["pytest"],
    },
    include_package_data=True,
    license="MIT",
    entry_points={
        "console_scripts": [
            "extsecrets-populate=extsecrets_populate.cli:main",
        ],
    },
    python_requires=">=3.8",
    install_requires=[
        "google-cloud-secret-manager~=2.0",
        "google-cloud-storage>1.0,<4.0",
        "google-auth>=2.0",
        "google-crc32c~=1.0",
        "grpcio~=1.0",
        "hvac>=1.0",
        "azure-core>=1.0",
        "azure-identity~=1.0",
        "azure-keyvault-secrets~=4.0",
        "kubernetes>=24.0",
        "Jinja2~=3.0",
        "PyYAML>=5.4",
    ],
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],

)
