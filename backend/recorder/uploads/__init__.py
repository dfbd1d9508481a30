"""Recording upload intake for the recorder service.

An upload flows through a fixed sequence of steps:

1. Validation of presence and declared size against the configured limit
2. Staging of the bytes at a private temporary path
3. Routing to the first external storage handler that claims it
4. Fallback to the default media library when no handler claims it
5. Normalization into the JSON response shape, followed by post-save
   notification of any registered listeners

The staged temp file is removed on every exit path once routing resolves.
"""
