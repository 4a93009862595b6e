"""Lambda-backed CloudFormation custom resource that populates an EFS volume.

Downloads a zip archive from a URL and extracts it onto a mounted EFS access
point whenever the custom resource is created or updated.
"""
