from setuptools import setup, find_packages

# Setup configuration
setup(
    name="arducor",
    version="0.1.0",
    description="ArduCor LED routine engine and light protocol controller",
    author="ArduCor Team",
    packages=find_packages(exclude=['test', 'test.*']),
    include_package_data=True,
    install_requires=[
        'numpy',
    ],
    extras_require={
        'test': [
            'pytest',
        ],
    },
    entry_points={
        'console_scripts': [
            'arducor=arducor.app:main',
        ],
    },
    python_requires='>=3.7',
)
