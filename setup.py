from setuptools import setup, find_packages

setup(
    name="s3ship",
    version="0.1.0",
    packages=find_packages(include=["s3ship", "s3ship.*"]),
    py_modules=["cli"],
    install_requires=[
        "boto3",
        "botocore",
        "sqlalchemy>=1.4",
    ],
    extras_require={
        "test": [
            "pytest",
            "moto[s3]>=5",
        ],
    },
    entry_points={
        'console_scripts': [
            's3ship=cli:main',
        ],
    },
    description="Reproducible static-site packaging and dependency-ordered S3 deployment",
    python_requires='>=3.8',
)
