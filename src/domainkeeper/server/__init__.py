"""DomainKeeper API server."""

from domainkeeper.server.api import DomainKeeperApi, create_app
from domainkeeper.server.app import ApiServer

__all__ = ["ApiServer", "DomainKeeperApi", "create_app"]
