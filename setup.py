import setuptools

with open("README.md", "r") as fh:
    long_description = fh.read()

setuptools.setup(
    name="chainserver",
    version="0.3",
    description="TLS server returning its DNSSEC authentication chain in a TLS extension",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=['chainlib'],
    scripts=['chainserver.py'],
    install_requires=[
        'dnspython>=2.3',
        'pycryptodome',
        'pynacl',
    ],
    extras_require={
        'test': ['cryptography', 'pytest'],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: POSIX",
    ],
    python_requires='>=3.8',
)
