"""Common Lambda utilities and base classes.

Provides the base handler, the CloudFormation custom resource handler,
logging, metrics and models shared by the populate handlers.
"""
