"""
This module serves as the package initializer for ``CertAutolib.models``.
The model classes in this package encapsulate the data of a certificate
request and the single steps of its lifecycle: preparing the credential
store, submitting the request, polling for completion, guarding against
duplicate submission and placing the issued material on disk.
"""
