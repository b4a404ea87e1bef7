"""camscout - reachability tracking and discovery for networked cameras.

Keeps an inventory of cameras annotated with how they can currently be
reached (authenticated, unauthenticated, or network-reachable only) and
finds new cameras on local subnets via WS-Discovery.
"""

__version__ = "0.1.0"
__author__ = "Tyler Zervas"
__email__ = "tz-dev@vectorweight.com"

from .config import Config

__all__ = ["Config"]
