import os
from io import open as io_open

from setuptools import setup, find_packages

__version__ = None
src_dir = os.path.abspath(os.path.dirname(__file__))
version_file = os.path.join(src_dir, 'slicestem', '_version.py')
with io_open(version_file, mode='r') as fd:
    exec(fd.read())

fndoc = os.path.join(src_dir, 'README.md')
with io_open(fndoc, mode='r', encoding='utf-8') as fd:
    README_md = fd.read()

setup(
    name='slicestem',
    version=__version__,
    description='Multislice simulation of depth-resolved STEM detector images',
    long_description=README_md,
    long_description_content_type='text/markdown',
    platforms=['any'],
    python_requires='>=3.9',
    install_requires=[
        'numpy',
        'numba',
        'pyfftw',
        'ase',
        'dask',
        'pyyaml',
        'tqdm',
        'psutil'],
    extras_require={
        'test': ['pytest',
                 'hypothesis']
    },
    tests_require=['pytest', 'hypothesis'],
    packages=find_packages(include=['slicestem', 'slicestem.*']),
    package_data={'slicestem.core': ['slicestem.yaml']},
    include_package_data=True,
)
