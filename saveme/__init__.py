"""
SaveMe vault backend.

A FastAPI service where authenticated users keep password entries and
uploaded documents, scoped per account, with blobs on local disk or
S3-compatible object storage.
"""
