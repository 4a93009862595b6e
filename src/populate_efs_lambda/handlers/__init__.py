"""Lambda handler implementations.

Contains the EFS populate handlers, both as a CloudFormation custom
resource and as a plain request/response handler.
"""
