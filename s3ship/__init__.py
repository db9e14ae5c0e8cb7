"""s3ship: package static files and publish them to S3 deployment targets."""

__version__ = "0.1.0"
