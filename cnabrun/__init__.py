"""Claims, results, credential sets and invocation-image drivers for CNAB bundles."""

__version__ = "0.1.0"