"""Log-store extension: forwards the platform log stream to a TCP log-store."""
