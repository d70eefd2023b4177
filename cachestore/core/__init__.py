"""
Core storage contract for the build cache.

This package does not import boto3 or any other client library. It
defines what a backend must do, the errors it may raise and the
context used to cancel its calls.
"""
