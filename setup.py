from setuptools import setup, find_packages
import re

# Read version from __init__.py without importing the package
with open("cms_migrator/__init__.py", "r", encoding="utf-8") as f:
    version_match = re.search(r'__version__\s*=\s*[\'"]([^\'"]*)[\'"]', f.read())
    version = version_match.group(1) if version_match else "0.1.0"

# Read long description from README.md
with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

# Read requirements from requirements.txt
with open("requirements.txt", "r", encoding="utf-8") as f:
    requirements = [line.strip() for line in f if line.strip() and not line.startswith("#")]

setup(
    name="cms-asset-migrator",
    version=version,
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=requirements,
    extras_require={
        "test": ["pytest>=7.0", "httplib2>=0.20"],
    },
    entry_points={
        'console_scripts': [
            'cms-migrator=cms_migrator.__main__:main',
        ],
    },
    description="Tool for migrating legacy CMS collections and their images to a new CMS and CDN",
    long_description=long_description,
    long_description_content_type="text/markdown",
    keywords="cms, webflow, migration, images, cdn, cloud-storage",
    python_requires=">=3.9",
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Intended Audience :: System Administrators",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
    include_package_data=True,
    package_data={
        "cms_migrator": ["py.typed"],
    },
)
