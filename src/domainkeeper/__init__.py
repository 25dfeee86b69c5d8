"""domainkeeper: custom domain and platform subdomain lifecycle management."""

__version__ = "0.3.0"
