"""
Setup script for the TPU harness.

Installs the ``tpu_harness`` package and the ``tpu-harness`` command. PyTorch/XLA
and torchvision are optional extras: without them remote targets run on the
host CPU and the ResNet50 example is unavailable.
"""

from setuptools import setup
import os

setup(
    name='tpu-harness',
    version='0.1.0',
    author='TPU Harness Team',
    description='Compile / execute / verify harness for tensor programs on TPUs',
    long_description=open('README.md').read() if os.path.exists('README.md') else '',
    long_description_content_type='text/markdown',
    packages=[
        'tpu_harness',
        'tpu_harness.cli',
    ],
    package_dir={'': 'src'},
    python_requires='>=3.10',
    install_requires=[
        'torch>=2.1.0',
        'numpy>=1.21.0',
    ],
    extras_require={
        'tpu': [
            'torch_xla',
        ],
        'vision': [
            'torchvision',
        ],
        'test': [
            'pytest>=7.0.0',
        ],
        'dev': [
            'pytest>=7.0.0',
            'torchvision',
        ],
    },
    entry_points={
        'console_scripts': [
            'tpu-harness=tpu_harness.cli:main',
        ],
    },
    classifiers=[
        'Development Status :: 3 - Alpha',
        'Intended Audience :: Developers',
        'Intended Audience :: Science/Research',
        'License :: OSI Approved :: MIT License',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
        'Topic :: Scientific/Engineering :: Artificial Intelligence',
        'Topic :: Software Development :: Testing',
    ],
    zip_safe=False,
)
