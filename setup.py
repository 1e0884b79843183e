from setuptools import setup, find_packages

setup(
    name='flashtastic',
    version='0.1.0',
    package_dir={'': 'src'},
    packages=find_packages('src'),
    python_requires='>=3.9',
    install_requires=[
        'aiohttp',
        'aiofiles',
        'pick',
        'platformdirs',
        'psutil',
        'pyusb',
        'PyYAML',
        'rich',
    ],
    extras_require={
        'test': [
            'pytest<9',
            'pytest-asyncio',
            'pytest-mock',
        ],
    },
    entry_points={
        'console_scripts': [
            'flashtastic=flashtastic.cli:cli',
        ],
    },
)
